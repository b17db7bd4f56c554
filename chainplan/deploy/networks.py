"""Project loader - parse and validate the project configuration file."""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..core.exceptions import ConfigurationError
from .models import NetworkConfig, ProjectConfig

logger = logging.getLogger(__name__)

LOCAL_NETWORK = "local"

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ProjectLoader:
    """Load project configuration (compiler, artifacts, networks) from YAML."""

    def load(self, yaml_path: str | Path | None) -> ProjectConfig:
        """Load the project configuration.

        A missing file yields the defaults. The simulated ``local`` network
        is always available unless the file defines its own.

        Args:
            yaml_path: Path to the project YAML file

        Returns:
            Validated ProjectConfig

        Raises:
            ConfigurationError: If parsing or validation fails
        """
        data: dict[str, Any] = {}

        if yaml_path is not None and Path(yaml_path).exists():
            try:
                with open(yaml_path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {yaml_path}: {e}") from e

            if not isinstance(data, dict):
                raise ConfigurationError("Project file must contain a dictionary")
            data = self._expand_sections(data)
        elif yaml_path is not None:
            logger.debug("No project file at %s, using defaults", yaml_path)

        try:
            project = ProjectConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid project configuration:\n{e}") from e

        project.networks.setdefault(LOCAL_NETWORK, NetworkConfig(simulated=True))
        for network_id in project.unavailable:
            project.networks.pop(network_id, None)
        self._check_accounts(project)
        return project

    def _expand_sections(self, data: dict[str, Any]) -> dict[str, Any]:
        """Expand the environment in every section.

        A network whose variables are unset is listed under ``unavailable``
        instead of failing the whole file; only selecting it is an error.
        """
        expanded = {
            key: self._expand_env(value) for key, value in data.items() if key != "networks"
        }
        expanded["unavailable"] = {}

        networks = data.get("networks") or {}
        if not isinstance(networks, dict):
            # Left to model validation
            expanded["networks"] = networks
            return expanded

        expanded["networks"] = {}
        for network_id, network in networks.items():
            try:
                expanded["networks"][network_id] = self._expand_env(network)
            except ConfigurationError as e:
                expanded["unavailable"][str(network_id)] = e.message
        return expanded

    def _expand_env(self, value: Any) -> Any:
        """Replace ``${VAR}`` in strings with environment values."""
        if isinstance(value, str):

            def replace(match: re.Match) -> str:
                name = match.group(1)
                if name not in os.environ:
                    raise ConfigurationError(f"Environment variable {name} is not set")
                return os.environ[name]

            return _ENV_REFERENCE.sub(replace, value)
        if isinstance(value, dict):
            return {key: self._expand_env(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._expand_env(item) for item in value]
        return value

    def _check_accounts(self, project: ProjectConfig) -> None:
        for network_id, network in project.networks.items():
            for account in network.accounts:
                if len(account.removeprefix("0x")) == 64:
                    # Signing is the node's job; only addresses belong here
                    raise ConfigurationError(
                        f"Network {network_id}: accounts must be addresses of "
                        "node-managed accounts, not private keys"
                    )


def network_sender(network: NetworkConfig, default: str) -> str:
    """Account that sends transactions on a network."""
    return network.accounts[0] if network.accounts else default
