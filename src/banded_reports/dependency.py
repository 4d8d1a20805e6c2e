"""Dependency resolver: orders variables so dependencies evaluate first.

A dependency graph maps each variable name to the names its expression
reads. Edges come from static field references; native functions contribute
no edges unless the conservative mode is requested. All functions here are
pure: they never mutate the graph they are given.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable
from typing import Any

from banded_reports.calculation import contains_native_function, extract_field_references
from banded_reports.errors import CircularDependency, MissingDependencies
from banded_reports.results import Result

logger = logging.getLogger(__name__)

DependencyGraph = dict[str, list[str]]


def build_graph(variables: Iterable[Any], conservative: bool = False) -> DependencyGraph:
    """Build a graph from variable definitions (anything with name + expression)."""
    variables = list(variables)
    names = [var.name for var in variables]
    graph: DependencyGraph = {}
    for var in variables:
        deps = extract_field_references(var.expression)
        condition = getattr(var, "condition", None)
        if condition is not None:
            deps = list(dict.fromkeys(deps + extract_field_references(condition)))
        if conservative and (
            contains_native_function(var.expression) or contains_native_function(condition)
        ):
            deps = list(dict.fromkeys(deps + [n for n in names if n != var.name]))
        graph[var.name] = deps
    return graph


def _nodes(graph: DependencyGraph) -> list[str]:
    """All nodes: keys in insertion order, then dependency-only names as first seen."""
    seen = dict.fromkeys(graph)
    for deps in graph.values():
        for dep in deps:
            seen.setdefault(dep, None)
    return list(seen)


def resolve_order(graph: DependencyGraph) -> Result:
    """Topologically sort the graph, dependencies first.

    Ties between independent nodes keep their input order. A cyclic graph
    fails with CircularDependency.
    """
    cycles = detect_cycles(graph)
    if not cycles.ok:
        return cycles
    return Result.success(_kahn(graph, _nodes(graph)))


def _kahn(graph: DependencyGraph, nodes: list[str]) -> list[str]:
    position = {node: i for i, node in enumerate(nodes)}
    remaining = {node: 0 for node in nodes}
    dependents: dict[str, list[str]] = {node: [] for node in nodes}
    for node in nodes:
        for dep in dict.fromkeys(graph.get(node, [])):
            if dep in position:
                remaining[node] += 1
                dependents[dep].append(node)

    ready = [position[node] for node in nodes if remaining[node] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        node = nodes[heapq.heappop(ready)]
        order.append(node)
        for dependent in dependents[node]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, position[dependent])
    return order


def resolve_partial_order(graph: DependencyGraph, changed: Iterable[str]) -> Result:
    """Order only ``changed`` and everything that transitively depends on it."""
    changed = list(changed)
    affected = set(changed)
    for name in changed:
        affected.update(find_dependents(graph, name))
    subgraph = restrict_graph(graph, [n for n in _nodes(graph) if n in affected])
    return resolve_order(subgraph)


def restrict_graph(graph: DependencyGraph, names: Iterable[str]) -> DependencyGraph:
    """Sub-graph over ``names``; edges leaving the set are dropped."""
    keep = list(dict.fromkeys(names))
    allowed = set(keep)
    return {
        name: [dep for dep in graph.get(name, []) if dep in allowed]
        for name in keep
    }


def depends_on(graph: DependencyGraph, variable: str, dependency: str) -> bool:
    """True if ``dependency`` is reachable from ``variable``."""
    stack = list(graph.get(variable, []))
    visited: set[str] = set()
    while stack:
        node = stack.pop()
        if node == dependency:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(graph.get(node, []))
    return False


def find_dependents(graph: DependencyGraph, variable: str) -> list[str]:
    """All variables that directly or transitively depend on ``variable``."""
    reverse: dict[str, list[str]] = {}
    for name, deps in graph.items():
        for dep in deps:
            reverse.setdefault(dep, []).append(name)

    found: list[str] = []
    queue = list(reverse.get(variable, []))
    while queue:
        name = queue.pop(0)
        if name in found:
            continue
        found.append(name)
        queue.extend(reverse.get(name, []))
    return found


def detect_cycles(graph: DependencyGraph) -> Result:
    """Result([]) for an acyclic graph, else a CircularDependency failure.

    The reported cycle starts and ends with the same node, following
    dependency edges: ``[a, b, a]`` means a depends on b depends on a.
    """
    cycle = _find_cycle(graph)
    if cycle is None:
        return Result.success([])
    logger.debug("Circular dependency detected: %s", " -> ".join(cycle))
    return Result.failure(CircularDependency(cycle=cycle))


def _find_cycle(graph: DependencyGraph) -> list[str] | None:
    visited: set[str] = set()
    for start in graph:
        if start in visited:
            continue
        # Iterative DFS; the path doubles as the recursion stack
        path: list[str] = [start]
        on_path = {start}
        iterators = [iter(graph.get(start, []))]
        visited.add(start)
        while iterators:
            dep = next(iterators[-1], None)
            if dep is None:
                on_path.discard(path.pop())
                iterators.pop()
                continue
            if dep in on_path:
                return path[path.index(dep):] + [dep]
            if dep in visited:
                continue
            visited.add(dep)
            path.append(dep)
            on_path.add(dep)
            iterators.append(iter(graph.get(dep, [])))
    return None


def validate_dependencies(graph: DependencyGraph, known: Iterable[str]) -> Result:
    """Fail with MissingDependencies when an edge points at an unknown name."""
    known_set = set(known)
    missing: list[str] = []
    for deps in graph.values():
        for dep in deps:
            if dep not in known_set and dep not in missing:
                missing.append(dep)
    if missing:
        return Result.failure(MissingDependencies(names=missing))
    return Result.success(None)


def dependency_depth(graph: DependencyGraph, variable: str) -> int:
    """0 for leaves and unknown names, else 1 + the deepest dependency."""
    return _depth(graph, variable, set())


def _depth(graph: DependencyGraph, variable: str, visiting: set[str]) -> int:
    deps = [dep for dep in graph.get(variable, []) if dep not in visiting]
    if not graph.get(variable):
        return 0
    visiting = visiting | {variable}
    return 1 + max((_depth(graph, dep, visiting) for dep in deps), default=-1)
