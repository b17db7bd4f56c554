"""Module builder - declare deployment actions as a graph of futures.

Everything here is pure graph construction; no network I/O happens while a
module is being built.

Usage:
    from chainplan.modules import build_module

    def token_module(m):
        token = m.contract("Token")
        m.call(token, "mint", [1000])
        return {"token": token}

    TokenModule = build_module("TokenModule", token_module)
"""

import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..core.exceptions import DuplicateActionName
from .models import Action, ActionKind, Future, ModuleParameter

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")

_NO_DEFAULT = object()


class Module:
    """A named set of actions and the futures it exports."""

    def __init__(self, name: str):
        if not _NAME_PATTERN.match(name):
            raise ValueError(f"Invalid module name: {name!r}")
        self.name = name
        self.actions: dict[str, Action] = {}
        self.exports: dict[str, Future] = {}
        self.submodules: list["Module"] = []
        self.parameters: dict[str, ModuleParameter] = {}

    def action_id(self, name: str) -> str:
        return f"{self.name}#{name}"

    def add(self, action: Action) -> None:
        """Append an action, rejecting duplicate names."""
        if action.id in self.actions:
            raise DuplicateActionName(action.id)
        self.actions[action.id] = action

    def future(self, name: str) -> Future:
        """Reference an action of this module by name, declared or not."""
        return Future(action_id=self.action_id(name))

    def __getitem__(self, export: str) -> Future:
        return self.exports[export]

    def __repr__(self) -> str:
        return f"Module({self.name!r}, actions={len(self.actions)})"


class ModuleBuilder:
    """Declarative API handed to module definition functions."""

    def __init__(self, module: Module):
        self.module = module

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _declare(
        self,
        kind: ActionKind,
        name: str,
        after: Iterable[Future] = (),
        **fields: Any,
    ) -> Future:
        if not _NAME_PATTERN.match(name):
            raise ValueError(f"Invalid action name: {name!r}")

        action = Action(
            id=self.module.action_id(name),
            module=self.module.name,
            name=name,
            kind=kind,
            after=tuple(after),
            index=len(self.module.actions),
            **fields,
        )
        self.module.add(action)
        return Future(action_id=action.id)

    def _contract_of(self, target: Any) -> str | None:
        """Contract name behind a target future declared in this module graph."""
        if not isinstance(target, Future) or target.selector:
            return None
        for module in self._reachable_modules():
            action = module.actions.get(target.action_id)
            if action is not None and action.kind.yields_contract:
                return action.contract
        return None

    def _reachable_modules(self) -> list[Module]:
        seen: list[Module] = []
        stack = [self.module]
        while stack:
            module = stack.pop()
            if any(module is other for other in seen):
                continue
            seen.append(module)
            stack.extend(module.submodules)
        return seen

    @staticmethod
    def _label(target: Any, contract: str | None) -> str:
        if contract:
            return contract
        if isinstance(target, Future):
            return target.action_id.split("#", 1)[-1]
        return "contract"

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def contract(
        self,
        name: str,
        args: Iterable[Any] = (),
        *,
        id: str | None = None,
        value: Any = 0,
        after: Iterable[Future] = (),
    ) -> Future:
        """Deploy a contract. The future resolves to its address."""
        return self._declare(
            ActionKind.DEPLOY,
            id or name,
            after,
            contract=name,
            args=tuple(args),
            value=value,
        )

    def call(
        self,
        target: Any,
        method: str,
        args: Iterable[Any] = (),
        *,
        id: str | None = None,
        value: Any = 0,
        after: Iterable[Future] = (),
    ) -> Future:
        """Send a transaction calling ``method`` on a contract.

        Args:
            target: Contract future or literal address.
            method: Method name.
            args: Method arguments; may contain futures.
            id: Action name override.
            value: Native value to send.
            after: Extra futures that must confirm first.

        Returns:
            Future resolving to the call's output.
        """
        contract = self._contract_of(target)
        return self._declare(
            ActionKind.CALL,
            id or f"{self._label(target, contract)}.{method}",
            after,
            contract=contract,
            method=method,
            target=target,
            args=tuple(args),
            value=value,
        )

    def static_call(
        self,
        target: Any,
        method: str,
        args: Iterable[Any] = (),
        *,
        id: str | None = None,
        after: Iterable[Future] = (),
    ) -> Future:
        """Read a method's return value without sending a transaction."""
        contract = self._contract_of(target)
        return self._declare(
            ActionKind.STATIC_CALL,
            id or f"{self._label(target, contract)}.{method}",
            after,
            contract=contract,
            method=method,
            target=target,
            args=tuple(args),
        )

    def contract_at(
        self,
        name: str,
        address: Any,
        *,
        id: str | None = None,
        after: Iterable[Future] = (),
    ) -> Future:
        """Bind a contract's ABI to an already deployed address."""
        return self._declare(
            ActionKind.CONTRACT_AT,
            id or name,
            after,
            contract=name,
            address=address,
        )

    def read_address(
        self,
        source: Any,
        *,
        id: str | None = None,
        after: Iterable[Future] = (),
    ) -> Future:
        """Materialize an existing address from a literal or another output."""
        if id is None:
            if isinstance(source, Future):
                id = f"{source.action_id.split('#', 1)[-1]}.address"
            else:
                raise ValueError("read_address of a literal requires an explicit id")
        return self._declare(ActionKind.READ_ADDRESS, id, after, address=source)

    def parameter(self, name: str, default: Any = _NO_DEFAULT) -> ModuleParameter:
        """Declare a module input, supplied through the run's parameters."""
        param = ModuleParameter(
            module=self.module.name,
            name=name,
            default=None if default is _NO_DEFAULT else default,
            has_default=default is not _NO_DEFAULT,
        )
        self.module.parameters[name] = param
        return param

    def use_module(self, other: Module) -> dict[str, Future]:
        """Depend on another module and return the futures it exports."""
        if not any(other is module for module in self.module.submodules):
            self.module.submodules.append(other)
        return dict(other.exports)


def build_module(
    name: str,
    definition: Callable[[ModuleBuilder], Mapping[str, Future] | None],
) -> Module:
    """Create a module by running its definition function.

    Args:
        name: Module name, the prefix of every action id.
        definition: Function receiving a ModuleBuilder and returning the
            futures to export.

    Returns:
        The declared module.

    Raises:
        DuplicateActionName: If the definition reuses an action name.
    """
    module = Module(name)
    exports = definition(ModuleBuilder(module)) or {}

    for key, future in exports.items():
        if not isinstance(future, Future):
            raise TypeError(f"Module '{name}' export '{key}' is not a future")
        module.exports[key] = future

    return module
