"""
Data model for the module runtime.

Descriptors are pydantic models validated at config load. Registry entries,
handles and capabilities are plain dataclasses mutated in place by the loader,
the lifecycle orchestrator and the retry engine.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from modhost.utils.resilience.retry import ModuleRetryOverrides, Phase

__all__ = [
    "Location",
    "ModuleCapabilities",
    "ModuleDescriptor",
    "ModuleHandle",
    "ModuleState",
    "Phase",
    "RegistryEntry",
]


class Location(str, Enum):
    """Where a module is allowed to run"""

    SERVER = "server"
    CLIENT = "client"
    SHARED = "shared"


class ModuleState(str, Enum):
    """Lifecycle state of a registry entry"""

    REGISTERED = "registered"
    LOADED = "loaded"
    INITIALIZED = "initialized"
    STARTED = "started"
    STOPPED = "stopped"
    ERROR = "error"
    RECOVERED = "recovered"


class ModuleDescriptor(BaseModel):
    """Declared configuration of one module."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    location: Location = Location.SHARED
    dependencies: List[str] = Field(default_factory=list)
    critical: bool = False
    retry: ModuleRetryOverrides = Field(default_factory=ModuleRetryOverrides)

    @field_validator("location", mode="before")
    @classmethod
    def _lower_location(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("dependencies")
    @classmethod
    def _dedupe_dependencies(cls, value: List[str]) -> List[str]:
        # ordered set: keep first occurrence
        return list(dict.fromkeys(dep.strip() for dep in value if dep.strip()))


@dataclass(frozen=True)
class ModuleCapabilities:
    """Lifecycle callables a loaded module exposes, inspected once at load."""

    init: Optional[Callable[[], Any]] = None
    start: Optional[Callable[[], Any]] = None
    stop: Optional[Callable[[], Any]] = None
    on_error: Optional[Callable[[str], Any]] = None

    @classmethod
    def inspect(cls, instance: Any) -> "ModuleCapabilities":
        def _callable(attr: str) -> Optional[Callable[..., Any]]:
            candidate = getattr(instance, attr, None)
            return candidate if callable(candidate) else None

        return cls(
            init=_callable("init"),
            start=_callable("start"),
            stop=_callable("stop"),
            on_error=_callable("on_error"),
        )

    def for_phase(self, phase: Phase) -> Optional[Callable[[], Any]]:
        if phase in (Phase.INIT, Phase.START, Phase.STOP):
            return getattr(self, phase.value)
        return None


@dataclass(frozen=True)
class ModuleHandle:
    """
    Opaque loadable reference to a module.

    Either ``factory`` is called or ``import_path`` is imported; the produced
    value becomes the module instance.
    """

    path: str
    factory: Optional[Callable[[], Any]] = None
    import_path: Optional[str] = None
    disabled: bool = False
    client_only: bool = False

    def instantiate(self) -> Any:
        if self.factory is not None:
            return self.factory()
        if self.import_path:
            return importlib.import_module(self.import_path)
        raise LookupError(f"Module handle {self.path} has nothing to load")


@dataclass
class RegistryEntry:
    name: str
    handle: ModuleHandle
    instance: Any = None
    state: ModuleState = ModuleState.REGISTERED
    error: Optional[str] = None
    capabilities: ModuleCapabilities = field(default_factory=ModuleCapabilities)
    # last phase completed by a recovery queue drain
    recovered_phase: Optional[Phase] = None
