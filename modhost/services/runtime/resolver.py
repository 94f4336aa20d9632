"""
Dependency resolution.

Orders modules so every dependency comes before its dependents using Kahn's
algorithm. Ties break in discovery order, never lexicographically, so the
same input always yields the same order.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Container, Dict, List, Mapping, Optional, Sequence, Union

from modhost.utils.error_handler import ConfigError, CycleError
from modhost.utils.logger import get_logger

logger = get_logger(__name__)

DependencyLookup = Union[
    Mapping[str, Sequence[str]], Callable[[str], Optional[Sequence[str]]]
]


def _lookup(dependencies_of: DependencyLookup, name: str) -> Sequence[str]:
    if callable(dependencies_of):
        deps = dependencies_of(name)
    else:
        deps = dependencies_of.get(name)
    return deps or ()


def resolve_order(
    names: Sequence[str],
    dependencies_of: DependencyLookup,
    *,
    strict: bool = False,
    known: Container[str] = (),
) -> Optional[List[str]]:
    """
    Return ``names`` in dependency order, or None when they contain a cycle.

    Args:
        names: Working set, in discovery order.
        dependencies_of: Mapping or callable giving each module's dependencies.
        strict: Raise instead of warning on unknown dependencies and cycles.
        known: Names declared elsewhere; missing ones are external, not errors.

    Raises:
        ConfigError: strict mode and a dependency is unknown everywhere.
        CycleError: strict mode and the graph has a cycle.
    """
    working = list(dict.fromkeys(names))
    members = set(working)
    in_degree: Dict[str, int] = {name: 0 for name in working}
    dependents: Dict[str, List[str]] = {name: [] for name in working}

    for name in working:
        for dep in dict.fromkeys(_lookup(dependencies_of, name)):
            if dep not in members:
                if dep in known:
                    continue
                if strict:
                    raise ConfigError(
                        f"Missing dependency {dep} for {name}",
                        problems=[f"{name} -> {dep}"],
                    )
                logger.warning("missing_dependency", module=name, dependency=dep)
                continue
            dependents[dep].append(name)
            in_degree[name] += 1

    queue = deque(name for name in working if in_degree[name] == 0)
    order: List[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(order) < len(working):
        stuck = [name for name in working if in_degree[name] > 0]
        if strict:
            raise CycleError(
                f"Dependency cycle detected among: {', '.join(stuck)}", modules=stuck
            )
        logger.warning("dependency_cycle_detected", modules=stuck)
        return None
    return order
