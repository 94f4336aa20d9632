"""
Module Runtime

Discovers independently-authored modules, orders them by their declared
dependencies, and drives each through Load, Init, Start and Stop with
escalating retries and a deferred recovery queue.

Key Features:
- Deterministic dependency ordering with cycle detection
- Memoized loading with a reentrant-load guard
- Foreground, background and queued retries per module and phase
- Critical modules abort startup, non-critical ones degrade gracefully
"""

from .config import FolderPaths, RuntimeConfig
from .discovery import collect_module_names, discover, find, prune, tree_from_package
from .lifecycle import LifecycleOrchestrator, PhaseReport
from .loader import ModuleLoader
from .models import (
    Location,
    ModuleCapabilities,
    ModuleDescriptor,
    ModuleHandle,
    ModuleState,
    Phase,
    RegistryEntry,
)
from .recovery import PriorityLevel, QueueEntry, RecoveryQueue, RecoveryReport
from .registry import Registry
from .resolver import resolve_order
from .retry_engine import RetryEngine, RetryOutcome
from .runtime import Runtime, RuntimeStatus
from .signals import Signal
from .validation import validate_config

__all__ = [
    "FolderPaths",
    "LifecycleOrchestrator",
    "Location",
    "ModuleCapabilities",
    "ModuleDescriptor",
    "ModuleHandle",
    "ModuleLoader",
    "ModuleState",
    "Phase",
    "PhaseReport",
    "PriorityLevel",
    "QueueEntry",
    "RecoveryQueue",
    "RecoveryReport",
    "Registry",
    "RegistryEntry",
    "RetryEngine",
    "RetryOutcome",
    "Runtime",
    "RuntimeConfig",
    "RuntimeStatus",
    "Signal",
    "collect_module_names",
    "discover",
    "find",
    "prune",
    "resolve_order",
    "tree_from_package",
    "validate_config",
]
