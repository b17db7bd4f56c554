"""Artifact providers - compiled contracts supplied by the toolchain."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from ..core.exceptions import ArtifactNotFound, ConfigurationError
from ..core.types import ArtifactFile
from .models import Artifact

logger = logging.getLogger(__name__)


class ArtifactProvider(ABC):
    """Source of compiled contract artifacts."""

    @abstractmethod
    def get(self, contract_name: str) -> Artifact:
        """Return the artifact of a contract.

        Raises:
            ArtifactNotFound: If the toolchain produced no such contract.
        """


class FileArtifactProvider(ArtifactProvider):
    """Read Hardhat-style artifact JSON files from a directory tree.

    Looks for ``<name>.json`` anywhere below the root, e.g.
    ``artifacts/contracts/Token.sol/Token.json``. Debug files
    (``*.dbg.json``) and build-info are ignored. Results are cached so each
    contract is read once per provider.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self._cache: dict[str, Artifact] = {}

    def get(self, contract_name: str) -> Artifact:
        if contract_name in self._cache:
            return self._cache[contract_name]

        matches = [
            path
            for path in sorted(self.root.rglob(f"{contract_name}.json"))
            if "build-info" not in path.parts
        ]
        if not matches:
            raise ArtifactNotFound(contract_name, str(self.root))
        if len(matches) > 1:
            logger.warning(
                "Multiple artifacts named %s, using %s", contract_name, matches[0]
            )

        artifact = self._read(matches[0], contract_name)
        self._cache[contract_name] = artifact
        return artifact

    def _read(self, path: Path, contract_name: str) -> Artifact:
        try:
            data: ArtifactFile = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid artifact {path}: {e}") from e

        if "abi" not in data or "bytecode" not in data:
            raise ConfigurationError(f"Artifact {path} lacks 'abi' or 'bytecode'")

        logger.debug("Loaded artifact %s from %s", contract_name, path)
        return Artifact(
            contract_name=data.get("contractName", contract_name),
            abi=data["abi"],
            bytecode=data["bytecode"],
        )


class StaticArtifactProvider(ArtifactProvider):
    """Artifacts supplied in memory, e.g. for simulated networks and tests."""

    def __init__(self, artifacts: dict[str, Artifact] | None = None, strict: bool = False):
        """Initialize provider.

        Args:
            artifacts: Known artifacts by contract name.
            strict: If False, unknown contracts get an empty artifact.
        """
        self.artifacts = dict(artifacts or {})
        self.strict = strict
        self.requests: list[str] = []

    def get(self, contract_name: str) -> Artifact:
        self.requests.append(contract_name)
        if contract_name in self.artifacts:
            return self.artifacts[contract_name]
        if self.strict:
            raise ArtifactNotFound(contract_name, "memory")
        return Artifact(contract_name=contract_name)
