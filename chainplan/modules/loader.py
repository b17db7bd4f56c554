"""Module loader - read module definitions from Python or YAML files.

Python files declare modules with ``build_module``; every ``Module`` object
at the top level of the file is discovered. YAML files describe the same
graph declaratively; actions reference each other with ``@Name``,
``@OtherModule#Name`` and index/key selectors such as ``@pair[0]``.
"""

import importlib.util
import logging
import re
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from ..core.exceptions import ModuleLoadError
from .builder import Module, ModuleBuilder, build_module
from .models import Future

logger = logging.getLogger(__name__)

_REFERENCE = re.compile(
    r"^@(?:(?P<module>[A-Za-z_][\w.\-]*)#)?(?P<name>[A-Za-z_][\w.\-]*)(?P<path>(?:\[[^\]]+\])*)$"
)
_SELECTOR = re.compile(r"\[([^\]]+)\]")

_ACTION_KINDS = ("deploy", "call", "static_call", "contract_at", "read_address")


# ============================================================================
# YAML schema
# ============================================================================


class ActionDefinition(BaseModel):
    """One action entry of a YAML module."""

    id: str | None = Field(None, description="Action name override")
    deploy: str | None = Field(None, description="Contract to deploy")
    call: str | None = Field(None, description="Method to call in a transaction")
    static_call: str | None = Field(None, description="Method to read")
    contract_at: str | None = Field(None, description="Contract bound to 'address'")
    read_address: Any = Field(None, description="Reference or literal address")
    target: Any = Field(None, description="Call target reference or address")
    address: Any = Field(None, description="Address for contract_at")
    args: list[Any] = Field(default_factory=list)
    value: Any = 0
    after: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_single_kind(self) -> "ActionDefinition":
        kinds = [kind for kind in _ACTION_KINDS if getattr(self, kind) is not None]
        if len(kinds) != 1:
            raise ValueError(
                f"Action must set exactly one of {', '.join(_ACTION_KINDS)}; got {kinds or 'none'}"
            )
        kind = kinds[0]
        if kind in ("call", "static_call") and self.target is None:
            raise ValueError(f"'{kind}' requires 'target'")
        if kind == "contract_at" and self.address is None:
            raise ValueError("'contract_at' requires 'address'")
        return self

    @property
    def kind(self) -> str:
        return next(kind for kind in _ACTION_KINDS if getattr(self, kind) is not None)


class ModuleDefinition(BaseModel):
    """One module of a YAML module file."""

    name: str
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Parameter defaults"
    )
    uses: list[str] = Field(default_factory=list, description="Modules this one uses")
    actions: list[ActionDefinition] = Field(default_factory=list)
    exports: dict[str, str] = Field(default_factory=dict)


class ModuleFile(BaseModel):
    """Complete YAML module file."""

    modules: list[ModuleDefinition]

    @model_validator(mode="after")
    def validate_unique_names(self) -> "ModuleFile":
        names = [module.name for module in self.modules]
        if len(names) != len(set(names)):
            raise ValueError("Module names must be unique")
        return self


# ============================================================================
# Loader
# ============================================================================


class ModuleLoader:
    """Load modules from ``.py``, ``.yaml`` or ``.yml`` files."""

    def load(self, path: str | Path, module_name: str | None = None) -> Module:
        """Load the root module declared in a file.

        Args:
            path: Module file
            module_name: Module to select when the file declares several roots

        Returns:
            The selected module (used modules hang off its ``submodules``)

        Raises:
            ModuleLoadError: If loading or validation fails
        """
        path = Path(path)
        if not path.exists():
            raise ModuleLoadError(f"Module file not found: {path}")

        if path.suffix == ".py":
            modules = self._load_python(path)
        elif path.suffix in (".yaml", ".yml"):
            modules = self._load_yaml(path)
        else:
            raise ModuleLoadError(f"Unsupported module file type: {path.suffix}")

        if not modules:
            raise ModuleLoadError(f"No modules declared in {path}")

        return self._select(modules, module_name, path)

    def _select(self, modules: list[Module], module_name: str | None, path: Path) -> Module:
        if module_name is not None:
            for module in modules:
                if module.name == module_name:
                    return module
            names = ", ".join(module.name for module in modules)
            raise ModuleLoadError(f"Module '{module_name}' not in {path} (found: {names})")

        used = [sub for module in modules for sub in module.submodules]
        roots = [m for m in modules if not any(m is sub for sub in used)]
        if len(roots) != 1:
            names = ", ".join(module.name for module in roots)
            raise ModuleLoadError(f"{path} declares several root modules ({names}); pick one")
        return roots[0]

    # ------------------------------------------------------------------
    # Python
    # ------------------------------------------------------------------

    def _load_python(self, path: Path) -> list[Module]:
        name = f"chainplan_modules_{path.stem}"
        spec = importlib.util.spec_from_file_location(name, path)
        if spec is None or spec.loader is None:
            raise ModuleLoadError(f"Cannot import {path}")

        module = importlib.util.module_from_spec(spec)
        directory = str(path.parent.resolve())
        sys.path.insert(0, directory)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise ModuleLoadError(f"Error importing {path}: {e}") from e
        finally:
            sys.path.remove(directory)

        found = [value for value in vars(module).values() if isinstance(value, Module)]
        logger.debug("Found %d modules in %s", len(found), path)
        return found

    # ------------------------------------------------------------------
    # YAML
    # ------------------------------------------------------------------

    def _load_yaml(self, path: Path) -> list[Module]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ModuleLoadError(f"Invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ModuleLoadError("Module file must contain a dictionary")

        try:
            definition = ModuleFile(**data)
        except ValidationError as e:
            raise ModuleLoadError(f"Validation error:\n{e}") from e

        definitions = {module.name: module for module in definition.modules}
        built: dict[str, Module] = {}

        def build(name: str, chain: list[str]) -> Module:
            if name in built:
                return built[name]
            if name in chain:
                raise ModuleLoadError(
                    "Modules use each other: " + " -> ".join(chain + [name])
                )
            if name not in definitions:
                raise ModuleLoadError(f"Module '{chain[-1]}' uses unknown module '{name}'")

            module_def = definitions[name]
            used = [build(sub, chain + [name]) for sub in module_def.uses]
            built[name] = self._build(module_def, used)
            return built[name]

        return [build(module.name, []) for module in definition.modules]

    def _build(self, definition: ModuleDefinition, used: list[Module]) -> Module:
        def declare(m: ModuleBuilder) -> dict[str, Future]:
            for sub in used:
                m.use_module(sub)
            for key, default in definition.parameters.items():
                m.parameter(key, default)

            for number, action in enumerate(definition.actions):
                try:
                    self._declare(m, action)
                except ValueError as e:
                    raise ModuleLoadError(
                        f"Module '{definition.name}' action {number}: {e}"
                    ) from e

            return {
                key: self._value(m, reference) for key, reference in definition.exports.items()
            }

        try:
            return build_module(definition.name, declare)
        except (TypeError, ValueError) as e:
            raise ModuleLoadError(f"Module '{definition.name}': {e}") from e

    def _declare(self, m: ModuleBuilder, action: ActionDefinition) -> None:
        args = self._value(m, action.args)
        after = [self._reference(m, ref) for ref in action.after]
        kind = action.kind

        if kind == "deploy":
            m.contract(
                action.deploy,
                args,
                id=action.id,
                value=self._value(m, action.value),
                after=after,
            )
        elif kind == "call":
            m.call(
                self._value(m, action.target),
                action.call,
                args,
                id=action.id,
                value=self._value(m, action.value),
                after=after,
            )
        elif kind == "static_call":
            m.static_call(
                self._value(m, action.target),
                action.static_call,
                args,
                id=action.id,
                after=after,
            )
        elif kind == "contract_at":
            m.contract_at(
                action.contract_at,
                self._value(m, action.address),
                id=action.id,
                after=after,
            )
        else:
            m.read_address(self._value(m, action.read_address), id=action.id, after=after)

    def _value(self, m: ModuleBuilder, value: Any) -> Any:
        """Convert references and parameters inside a YAML value."""
        if isinstance(value, str):
            if value.startswith("@@"):
                return value[1:]
            if value.startswith("@"):
                return self._reference(m, value)
            return value
        if isinstance(value, dict):
            if set(value) == {"param"}:
                name = value["param"]
                return m.module.parameters.get(name) or m.parameter(name)
            return {key: self._value(m, item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._value(m, item) for item in value]
        return value

    def _reference(self, m: ModuleBuilder, reference: str) -> Future:
        match = _REFERENCE.match(reference)
        if match is None:
            raise ValueError(f"Invalid reference: {reference}")

        module = match.group("module") or m.module.name
        future = Future(action_id=f"{module}#{match.group('name')}")
        steps = [
            int(step) if step.isdigit() else step
            for step in _SELECTOR.findall(match.group("path") or "")
        ]
        return future.select(*steps) if steps else future


def load_parameters(path: str | Path) -> dict[str, dict[str, Any]]:
    """Load module parameters from a JSON or YAML file.

    The file maps module names to ``{parameter: value}``.

    Raises:
        ModuleLoadError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ModuleLoadError(f"Parameters file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ModuleLoadError(f"Invalid parameters file: {e}") from e

    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        raise ModuleLoadError("Parameters file must map module names to mappings")
    return data
