"""
Registry of discovered modules.

One entry per module name, created at discovery and mutated in place by the
loader, the lifecycle orchestrator and the retry engine. State changes go
through ``transition`` so entries only move along the lifecycle state machine.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterator, List, Optional

from modhost.utils.error_handler import ConfigError
from modhost.utils.logger import get_logger

from .models import ModuleHandle, ModuleState, RegistryEntry

logger = get_logger(__name__)

_ANY_TO = frozenset({ModuleState.ERROR})

ALLOWED_TRANSITIONS: Dict[ModuleState, FrozenSet[ModuleState]] = {
    ModuleState.REGISTERED: frozenset({ModuleState.LOADED}) | _ANY_TO,
    ModuleState.LOADED: frozenset({ModuleState.INITIALIZED}) | _ANY_TO,
    ModuleState.INITIALIZED: frozenset({ModuleState.STARTED}) | _ANY_TO,
    # recovered marks a module that reached started through the recovery queue
    ModuleState.STARTED: frozenset({ModuleState.STOPPED, ModuleState.RECOVERED})
    | _ANY_TO,
    ModuleState.STOPPED: _ANY_TO,
    ModuleState.RECOVERED: frozenset({ModuleState.STOPPED}) | _ANY_TO,
    # a later non-reentrant load may still succeed
    ModuleState.ERROR: frozenset({ModuleState.LOADED}) | _ANY_TO,
}


class Registry:
    """Map from module name to its lifecycle entry."""

    def __init__(self, reject_duplicates: bool = False):
        self.reject_duplicates = reject_duplicates
        self._entries: Dict[str, RegistryEntry] = {}

    def register(self, name: str, handle: ModuleHandle) -> Optional[RegistryEntry]:
        """Create the entry for ``name``; returns None when a duplicate is skipped."""
        if name in self._entries:
            if self.reject_duplicates:
                raise ConfigError(f"Duplicate module name: {name}")
            logger.warning("duplicate_module_skipped", module=name)
            return None
        entry = RegistryEntry(name=name, handle=handle)
        self._entries[name] = entry
        return entry

    def get(self, name: str) -> Optional[RegistryEntry]:
        return self._entries.get(name)

    def names(self) -> List[str]:
        return list(self._entries)

    def transition(
        self, name: str, state: ModuleState, error: Optional[str] = None
    ) -> bool:
        entry = self._entries.get(name)
        if entry is None:
            logger.warning("transition_unknown_module", module=name, state=state.value)
            return False
        if entry.state is not state and state not in ALLOWED_TRANSITIONS[entry.state]:
            logger.warning(
                "illegal_state_transition",
                module=name,
                current=entry.state.value,
                requested=state.value,
            )
            return False
        entry.state = state
        entry.error = error
        return True

    def mark_error(self, name: str, message: str) -> bool:
        return self.transition(name, ModuleState.ERROR, error=message)

    def invalidate(self, prefix: Optional[str] = None) -> List[str]:
        """
        Drop every entry, or only the subtree rooted at ``prefix``.

        Returns the removed names. Loaded instances live in the loader's
        cache; use ``ModuleLoader.invalidate`` to drop both together.
        """
        doomed = [
            name
            for name in self._entries
            if prefix is None or name == prefix or name.startswith(f"{prefix}.")
        ]
        for name in doomed:
            del self._entries[name]
        logger.info("registry_invalidated", prefix=prefix, removed=len(doomed))
        return doomed

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)
