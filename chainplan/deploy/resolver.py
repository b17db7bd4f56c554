"""Graph resolver - compile declared modules into an execution plan."""

import heapq
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..core.exceptions import (
    CyclicDependency,
    DuplicateActionName,
    MissingParameter,
    UnresolvedFuture,
)
from ..modules.builder import Module
from ..modules.models import Action, ModuleParameter, substitute
from .models import Plan

logger = logging.getLogger(__name__)


class GraphResolver:
    """Resolve module graphs into deterministic, dependency-ordered plans."""

    def resolve(
        self,
        modules: Module | Iterable[Module],
        parameters: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> Plan:
        """Generate an execution plan from one or more modules.

        Args:
            modules: Root module(s); used submodules are included.
            parameters: Module parameter values, ``{module: {name: value}}``.

        Returns:
            Plan with ordered actions, dependency map and stages.

        Raises:
            DuplicateActionName: Two modules declare the same action id.
            MissingParameter: A parameter has neither a value nor a default.
            UnresolvedFuture: An action references an undeclared action.
            CyclicDependency: The actions form a cycle.
        """
        if isinstance(modules, Module):
            modules = [modules]

        # 1. Flatten into one global graph
        flat_modules = self._flatten(modules)
        actions = self._collect_actions(flat_modules)

        # 2. Substitute module parameters
        actions = [self._bind_parameters(action, parameters or {}) for action in actions]

        # 3. Dependency edges
        dependencies = self._resolve_dependencies(actions)

        # 4. Order
        order = self._topological_order(actions, dependencies)
        by_id = {action.id: action for action in actions}

        plan = Plan(
            modules=[module.name for module in flat_modules],
            actions=[by_id[action_id] for action_id in order],
            dependencies=dependencies,
            stages=self._stages(order, dependencies),
        )
        logger.debug(
            "Resolved %d actions from %d modules into %d stages",
            len(plan.actions),
            len(flat_modules),
            len(plan.stages),
        )
        return plan

    def _flatten(self, roots: Iterable[Module]) -> list[Module]:
        """List modules depth-first, submodules before their users, once each."""
        ordered: list[Module] = []
        visiting: list[Module] = []

        def visit(module: Module) -> None:
            if any(module is seen for seen in ordered):
                return
            if any(module is active for active in visiting):
                # Modules using each other; their actions still get ordered
                # (or rejected) by the action graph below.
                return
            visiting.append(module)
            for sub in module.submodules:
                visit(sub)
            visiting.pop()
            ordered.append(module)

        for root in roots:
            visit(root)
        return ordered

    def _collect_actions(self, modules: list[Module]) -> list[Action]:
        actions: list[Action] = []
        seen: set[str] = set()
        for module in modules:
            for action in sorted(module.actions.values(), key=lambda a: a.index):
                if action.id in seen:
                    raise DuplicateActionName(action.id)
                seen.add(action.id)
                actions.append(action)
        return actions

    def _bind_parameters(
        self, action: Action, parameters: Mapping[str, Mapping[str, Any]]
    ) -> Action:
        if not action.parameters():
            return action

        def bind(ref: Any) -> Any:
            if not isinstance(ref, ModuleParameter):
                return ref
            supplied = parameters.get(ref.module, {})
            if ref.name in supplied:
                return supplied[ref.name]
            if ref.has_default:
                return ref.default
            raise MissingParameter(ref.module, ref.name)

        return action.model_copy(
            update={
                "target": substitute(action.target, bind),
                "address": substitute(action.address, bind),
                "args": substitute(action.args, bind),
                "value": substitute(action.value, bind),
            }
        )

    def _resolve_dependencies(self, actions: list[Action]) -> dict[str, list[str]]:
        declared = {action.id for action in actions}
        dependencies: dict[str, list[str]] = {}

        for action in actions:
            deps = action.dependencies()
            for dep in deps:
                if dep not in declared:
                    raise UnresolvedFuture(action.id, dep)
            dependencies[action.id] = deps

        return dependencies

    def _topological_order(
        self, actions: list[Action], dependencies: dict[str, list[str]]
    ) -> list[str]:
        """Kahn's algorithm; ready actions leave in declaration order."""
        position = {action.id: i for i, action in enumerate(actions)}
        in_degree = {action.id: 0 for action in actions}
        dependents: dict[str, list[str]] = {action.id: [] for action in actions}

        for action_id, deps in dependencies.items():
            for dep in deps:
                in_degree[action_id] += 1
                dependents[dep].append(action_id)

        ready = [(position[a], a) for a, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[str] = []

        while ready:
            _, action_id = heapq.heappop(ready)
            order.append(action_id)
            for dependent in dependents[action_id]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (position[dependent], dependent))

        if len(order) < len(actions):
            remaining = [a.id for a in actions if in_degree[a.id] > 0]
            raise CyclicDependency(self._find_cycle(remaining, dependencies))

        return order

    def _find_cycle(
        self, remaining: list[str], dependencies: dict[str, list[str]]
    ) -> list[str]:
        """Return one cycle among the actions Kahn's algorithm could not order."""
        candidates = set(remaining)
        path: list[str] = []
        on_path: dict[str, int] = {}
        node = remaining[0]
        # Every remaining node has a remaining dependency, so this walk
        # must revisit a node within len(candidates) steps.
        while node not in on_path:
            on_path[node] = len(path)
            path.append(node)
            node = next(d for d in dependencies[node] if d in candidates)
        cycle = path[on_path[node]:]
        cycle.reverse()
        return cycle

    def _stages(
        self, order: list[str], dependencies: dict[str, list[str]]
    ) -> list[list[str]]:
        depth: dict[str, int] = {}
        stages: list[list[str]] = []
        for action_id in order:
            level = max((depth[d] + 1 for d in dependencies[action_id]), default=0)
            depth[action_id] = level
            if level == len(stages):
                stages.append([])
            stages[level].append(action_id)
        return stages
