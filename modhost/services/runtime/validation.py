"""
Static checks over the declared module graph, run before discovery.
"""

from __future__ import annotations

from typing import List

from modhost.utils.logger import get_logger

from .config import RuntimeConfig
from .models import Location
from .resolver import resolve_order

logger = get_logger(__name__)


def validate_config(config: RuntimeConfig, side: Location) -> List[str]:
    """
    Return every problem found in the descriptors relevant to ``side``.

    Relevant modules are those bound to ``side`` plus shared ones. A shared
    module may only depend on shared modules, and server and client modules
    may not depend on each other.
    """
    relevant = [
        name
        for name, descriptor in config.modules.items()
        if descriptor.location in (side, Location.SHARED)
    ]
    problems: List[str] = []

    for name in relevant:
        descriptor = config.modules[name]
        for dep in descriptor.dependencies:
            target = config.descriptor(dep)
            if target is None:
                problems.append(f"Missing dependency {dep} for {name}")
                continue
            if (
                descriptor.location is Location.SHARED
                and target.location is not Location.SHARED
            ):
                problems.append(
                    f"Shared module {name} depends on {target.location.value} module {dep}"
                )
            elif {descriptor.location, target.location} == {
                Location.SERVER,
                Location.CLIENT,
            }:
                problems.append(
                    f"{descriptor.location.value.capitalize()} module {name} "
                    f"depends on {target.location.value} module {dep}"
                )

    if resolve_order(relevant, config.dependencies_of, known=config.modules) is None:
        problems.append("Dependency cycle detected in config")

    logger.debug("config_validated", side=side.value, problems=len(problems))
    return problems
