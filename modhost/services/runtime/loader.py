"""
Module cache and loader.

``load`` instantiates a registered module at most once per process and
memoizes the value. A per-name in-flight marker catches runtime reentrant
loads (a module whose loading, directly or through its dependencies, asks
for itself again) and fails them fast with a ``CycleError``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Set

from modhost.utils.error_handler import CycleError, PhaseError
from modhost.utils.logger import get_logger
from modhost.utils.resilience.retry import Phase

from .config import RuntimeConfig
from .hooks import call_maybe_async
from .models import (
    Location,
    ModuleCapabilities,
    ModuleDescriptor,
    ModuleState,
    RegistryEntry,
)
from .registry import Registry
from .retry_engine import RetryEngine, RetryOutcome
from .signals import Signal

logger = get_logger(__name__)


class ModuleLoader:
    def __init__(
        self,
        registry: Registry,
        config: RuntimeConfig,
        retry_engine: RetryEngine,
        *,
        side: Location = Location.SERVER,
        module_loaded: Optional[Signal] = None,
        error_sink: Optional[Callable[[str], None]] = None,
    ):
        self._registry = registry
        self._config = config
        self._retry = retry_engine
        self._side = side
        self._module_loaded = module_loaded or Signal("module_loaded")
        self._error_sink = error_sink
        self._cache: Dict[str, Any] = {}
        self._loading: Set[str] = set()
        self._deferred: Set[str] = set()

    def is_loaded(self, name: str) -> bool:
        return name in self._cache

    def cached(self, name: str) -> Optional[Any]:
        return self._cache.get(name)

    def is_loading(self, name: str) -> bool:
        return name in self._loading

    async def load(self, name: str) -> Optional[Any]:
        """
        Return the module value for ``name``, loading it on first use.

        Returns None when the module is unknown, skipped for this side, or
        failed to load; the registry entry records why.

        Raises:
            CycleError: ``name`` is already being loaded further up the stack.
        """
        entry = self._registry.get(name)
        if entry is None:
            logger.warning("load_unknown_module", module=name)
            return None

        if name in self._cache:
            return self._cache[name]

        if name in self._loading:
            self._loading.discard(name)
            error = CycleError(
                f"Circular dependency detected while loading {name}", modules=[name]
            )
            logger.error("reentrant_load_detected", module=name)
            if self._error_sink is not None:
                self._error_sink(str(error))
            raise error

        if name in self._deferred:
            if entry.state is not ModuleState.ERROR:
                logger.debug("load_still_deferred", module=name)
                return None
            self._deferred.discard(name)

        descriptor = self._config.descriptor(name)
        self._loading.add(name)
        try:
            if self._client_exclusive(entry, descriptor):
                logger.info("client_module_skipped_on_server", module=name)
                return None

            outcome = await self._retry.execute(
                lambda: self._instantiate(entry),
                name,
                Phase.LOAD,
                descriptor,
                on_success=lambda instance: self._commit(entry, instance),
            )
        except PhaseError:
            # critical load failures surface through the registry state
            return None
        finally:
            self._loading.discard(name)

        if outcome is RetryOutcome.QUEUED or outcome is RetryOutcome.SCHEDULED:
            self._deferred.add(name)
        return self._cache.get(name)

    def invalidate(self, prefix: Optional[str] = None) -> List[str]:
        """Drop registry entries and cached instances for ``prefix`` (or all)."""
        removed = self._registry.invalidate(prefix)
        for name in removed:
            self._cache.pop(name, None)
            self._deferred.discard(name)
        return removed

    def is_deferred(self, name: str) -> bool:
        """True while a load for ``name`` waits in the background or the queue."""
        if name not in self._deferred or name in self._cache:
            return False
        entry = self._registry.get(name)
        return entry is not None and entry.state is not ModuleState.ERROR

    def _client_exclusive(
        self, entry: RegistryEntry, descriptor: Optional[ModuleDescriptor]
    ) -> bool:
        if self._side is not Location.SERVER:
            return False
        if entry.handle.client_only:
            return True
        return descriptor is not None and descriptor.location is Location.CLIENT

    async def _instantiate(self, entry: RegistryEntry) -> Any:
        value = await call_maybe_async(entry.handle.instantiate)
        if value is None:
            raise LookupError(f"Module {entry.name} produced no value")
        return value

    def _commit(self, entry: RegistryEntry, instance: Any) -> None:
        if self._registry.get(entry.name) is not entry:
            # invalidated while a deferred load was pending
            logger.info("stale_load_discarded", module=entry.name)
            return
        self._cache[entry.name] = instance
        self._deferred.discard(entry.name)
        entry.instance = instance
        entry.capabilities = ModuleCapabilities.inspect(instance)
        self._registry.transition(entry.name, ModuleState.LOADED)
        logger.info("module_loaded", module=entry.name)
        self._module_loaded.fire(entry.name, instance)
