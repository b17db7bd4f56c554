"""Pydantic models for declared deployment actions and their futures."""

import hashlib
import json
from collections.abc import Callable, Iterator
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActionKind(str, Enum):
    """Kinds of deployment steps a module can declare."""

    DEPLOY = "contract-deploy"
    CALL = "method-call"
    STATIC_CALL = "static-call"
    READ_ADDRESS = "read-existing-address"
    CONTRACT_AT = "contract-at"

    @property
    def sends_transaction(self) -> bool:
        return self in (ActionKind.DEPLOY, ActionKind.CALL)

    @property
    def yields_contract(self) -> bool:
        """Whether the action's output is the address of a known contract."""
        return self in (ActionKind.DEPLOY, ActionKind.CONTRACT_AT)


# ============================================================================
# Deferred values
# ============================================================================


class Future(BaseModel):
    """Reference to the eventual output of an action.

    A future has no value of its own. ``selector`` is a path of list indices
    or mapping keys into the output; an empty selector means the whole output
    (the deployed address for deploys, the return value for calls).
    """

    model_config = ConfigDict(frozen=True)

    action_id: str = Field(..., description="Id of the action producing the value")
    selector: tuple[int | str, ...] = Field(
        default=(), description="Path into the action output"
    )

    def __getitem__(self, key: int | str) -> "Future":
        return self.select(key)

    def select(self, *path: int | str) -> "Future":
        """Return a future for a nested part of this future's value."""
        return Future(action_id=self.action_id, selector=self.selector + tuple(path))

    def resolve(self, output: Any) -> Any:
        """Apply the selector to a concrete action output.

        Raises:
            KeyError: If the selector does not match the output's shape.
        """
        value = output
        for step in self.selector:
            try:
                value = value[step]
            except (IndexError, KeyError, TypeError) as e:
                raise KeyError(
                    f"Output of '{self.action_id}' has no element {step!r}"
                ) from e
        return value

    def __str__(self) -> str:
        path = "".join(f"[{step!r}]" for step in self.selector)
        return f"Future({self.action_id}{path})"


class ModuleParameter(BaseModel):
    """Named module input resolved from the run's parameters."""

    model_config = ConfigDict(frozen=True)

    module: str
    name: str
    default: Any = None
    has_default: bool = False

    def __str__(self) -> str:
        return f"Parameter({self.module}.{self.name})"


def walk(value: Any) -> Iterator[Future | ModuleParameter]:
    """Yield every future and parameter nested inside a value."""
    if isinstance(value, (Future, ModuleParameter)):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from walk(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from walk(item)


def substitute(value: Any, fn: Callable[[Future | ModuleParameter], Any]) -> Any:
    """Rebuild a value with every future and parameter replaced by ``fn``."""
    if isinstance(value, (Future, ModuleParameter)):
        return fn(value)
    if isinstance(value, dict):
        return {key: substitute(item, fn) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute(item, fn) for item in value]
    if isinstance(value, tuple):
        return tuple(substitute(item, fn) for item in value)
    return value


def canonical_json(value: Any) -> str:
    """Stable JSON encoding used for fingerprints and result comparison."""

    def encode(item: Any) -> Any:
        if isinstance(item, Future):
            return {"$future": item.action_id, "select": list(item.selector)}
        if isinstance(item, ModuleParameter):
            return {"$param": f"{item.module}.{item.name}"}
        if isinstance(item, Enum):
            return item.value
        raise TypeError(f"Cannot encode {type(item).__name__} value {item!r}")

    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=encode)


# ============================================================================
# Actions
# ============================================================================


class Action(BaseModel):
    """One declared deployment step. Immutable once declared."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Deterministic id: '<module>#<name>'")
    module: str = Field(..., description="Declaring module name")
    name: str = Field(..., description="Name unique within the module")
    kind: ActionKind
    contract: str | None = Field(None, description="Contract name, when known")
    method: str | None = Field(None, description="Method for calls")
    target: Any = Field(None, description="Call target: future or literal address")
    address: Any = Field(
        None, description="Address source for contract-at and read-existing-address"
    )
    args: tuple[Any, ...] = Field(default=(), description="Constructor or method arguments")
    value: Any = Field(0, description="Native value sent with the transaction")
    after: tuple[Future, ...] = Field(default=(), description="Explicit ordering dependencies")
    index: int = Field(0, description="Declaration order within the module")

    def _inputs(self) -> list[Any]:
        return [self.target, self.address, list(self.args), self.value, list(self.after)]

    def futures(self) -> list[Future]:
        """Futures consumed by this action, in argument order."""
        return [ref for ref in walk(self._inputs()) if isinstance(ref, Future)]

    def parameters(self) -> list[ModuleParameter]:
        return [ref for ref in walk(self._inputs()) if isinstance(ref, ModuleParameter)]

    def dependencies(self) -> list[str]:
        """Ids of the actions this one depends on, first use first."""
        seen: dict[str, None] = {}
        for future in self.futures():
            seen.setdefault(future.action_id, None)
        return list(seen)

    def fingerprint(self) -> str:
        """Hash of the action's content, stable across processes."""
        content = {
            "id": self.id,
            "kind": self.kind.value,
            "contract": self.contract,
            "method": self.method,
            "target": self.target,
            "address": self.address,
            "args": list(self.args),
            "value": self.value,
        }
        return hashlib.sha256(canonical_json(content).encode()).hexdigest()
