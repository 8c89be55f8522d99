from __future__ import annotations

from typing import Iterable, Optional
import heapq
import logging

from .errors import CycleError, UnknownModuleError
from .registry import ModuleRegistry
from .types import ExecutionPlan

logger = logging.getLogger(__name__)

_VISITING = 1
_DONE = 2


def plan(registry: ModuleRegistry, only: Optional[Iterable[str]] = None) -> ExecutionPlan:
    """Order registered modules so every module follows its dependencies.

    Ties are broken by ascending module id so the same registry always yields
    the same plan. ``only`` narrows the plan to the named modules plus
    everything they transitively depend on.
    """

    graph = _dependency_graph(registry)
    selected = set(graph)
    if only is not None:
        selected = _closure(graph, only)
    _reject_cycles(graph, selected)

    in_degree = {module_id: 0 for module_id in selected}
    dependents: dict[str, list[str]] = {module_id: [] for module_id in selected}
    for module_id in selected:
        for dep in graph[module_id]:
            in_degree[module_id] += 1
            dependents[dep].append(module_id)

    ready = [module_id for module_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: list[str] = []
    while ready:
        current = heapq.heappop(ready)
        ordered.append(current)
        for node in dependents[current]:
            in_degree[node] -= 1
            if in_degree[node] == 0:
                heapq.heappush(ready, node)

    logger.debug("plan=%s", ",".join(ordered))
    return ExecutionPlan(tuple(ordered))


def _dependency_graph(registry: ModuleRegistry) -> dict[str, tuple[str, ...]]:
    graph: dict[str, tuple[str, ...]] = {}
    for module in registry:
        for dep in module.depends_on:
            if dep not in registry:
                raise UnknownModuleError(dep, referenced_by=module.id)
        # Repeated ids in depends_on would skew the in-degree count.
        graph[module.id] = tuple(dict.fromkeys(module.depends_on))
    return graph


def _closure(graph: dict[str, tuple[str, ...]], only: Iterable[str]) -> set[str]:
    selected: set[str] = set()
    stack = list(only)
    for module_id in stack:
        if module_id not in graph:
            raise UnknownModuleError(module_id)
    while stack:
        current = stack.pop()
        if current in selected:
            continue
        selected.add(current)
        stack.extend(graph[current])
    return selected


def _reject_cycles(graph: dict[str, tuple[str, ...]], selected: set[str]) -> None:
    state: dict[str, int] = {}
    path: list[str] = []

    def visit(node: str) -> None:
        state[node] = _VISITING
        path.append(node)
        for dep in graph[node]:
            if state.get(dep) == _VISITING:
                start = path.index(dep)
                raise CycleError(path[start:] + [dep])
            if dep not in state:
                visit(dep)
        path.pop()
        state[node] = _DONE

    for node in sorted(selected):
        if node not in state:
            visit(node)
