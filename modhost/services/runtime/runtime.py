"""
Runtime bootstrap.

``Runtime`` is the single object a host application constructs. It owns the
registry, loader, retry engine, recovery queue and lifecycle orchestrator and
exposes the two entry points: ``start`` (validate, discover, resolve, then
Load, Init and Start, then drain the recovery queue) and ``stop``.
"""

from __future__ import annotations

import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from modhost.core.config import settings
from modhost.utils.error_handler import ConfigError, CycleError, PhaseError, log_error
from modhost.utils.logger import ensure_logging, get_logger
from modhost.utils.resilience.retry import Phase

from .config import RuntimeConfig
from .discovery import (
    ModuleCache,
    collect_module_names,
    discover,
    find,
    prune,
    tree_from_package,
)
from .lifecycle import LifecycleOrchestrator, PhaseReport
from .loader import ModuleLoader
from .models import Location, RegistryEntry
from .recovery import RecoveryQueue, RecoveryReport
from .registry import Registry
from .resolver import resolve_order
from .retry_engine import RetryEngine, RetryObserver
from .signals import Signal
from .validation import validate_config

logger = get_logger(__name__)


class RuntimeStatus(str, Enum):
    """Runtime operational status"""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Runtime:
    """
    Module runtime for one side of the application.

    Construct exactly one per process and pass it to whatever needs it.
    """

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        *,
        side: Union[Location, str, None] = None,
        source: Optional[Mapping[str, Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or RuntimeConfig()
        self.side = Location(side or settings.RUNTIME_SIDE)
        if self.side is Location.SHARED:
            raise ConfigError("A runtime must run on the server or the client side")
        self.source = source

        self.registry = Registry(reject_duplicates=self.config.reject_duplicates)
        self.module_loaded = Signal("module_loaded")
        self.global_error = Signal("global_error")
        self.recovery_queue = RecoveryQueue(self.registry, error_sink=self.on_error)
        self.retry_engine = RetryEngine(
            self.registry,
            self.config,
            self.recovery_queue,
            self.on_error,
            sleep=sleep,
            rng=rng,
        )
        self.loader = ModuleLoader(
            self.registry,
            self.config,
            self.retry_engine,
            side=self.side,
            module_loaded=self.module_loaded,
            error_sink=self.on_error,
        )
        self.lifecycle = LifecycleOrchestrator(
            self.registry, self.config, self.loader, self.retry_engine
        )

        self.status = RuntimeStatus.IDLE
        self.cache: ModuleCache = {}
        self.order: List[str] = []
        self.reports: Dict[Phase, PhaseReport] = {}
        self.recovery_report: Optional[RecoveryReport] = None
        self._subscriptions: List[Callable[[], None]] = []

        if self.config.on_error is not None:
            callback = self.config.on_error
            self._subscriptions.append(
                self.global_error.connect(
                    lambda source, message, _side: callback(source, message)
                )
            )

    def on_error(self, message: str, source: str = "runtime") -> None:
        """Error sink: log and broadcast a human-readable failure summary."""
        logger.warning(
            "runtime_error_reported",
            source=source,
            message=message,
            side=self.side.value,
        )
        self.global_error.fire(source, message, self.side.value)

    async def start(self) -> List[str]:
        """
        Bring every module up and return the resolved order.

        Raises:
            ConfigError: invalid config or discovery roots under strict mode.
            CycleError: static dependency cycle under strict mode.
            PhaseError: a critical module failed; later phases did not run.
        """
        if self.status is not RuntimeStatus.IDLE:
            raise RuntimeError(f"Runtime already started (status: {self.status.value})")

        ensure_logging()
        self.status = RuntimeStatus.STARTING
        started = time.perf_counter()
        logger.info(
            "runtime_starting", side=self.side.value, configured=len(self.config.modules)
        )

        try:
            self._validate()
            self.cache = self._discover()
            order = self._resolve()
            if order is None:
                self.status = RuntimeStatus.RUNNING
                return []
            self.order = order

            for phase in (Phase.LOAD, Phase.INIT, Phase.START):
                self.reports[phase] = await self.lifecycle.run_phase(phase, order)
            self.recovery_report = await self.recovery_queue.drain()
        except (ConfigError, CycleError) as exc:
            self.status = RuntimeStatus.FAILED
            log_error(exc, stage="start")
            self.on_error(str(exc), source="start")
            raise
        except PhaseError:
            # already reported to the error sink by the retry engine
            self.status = RuntimeStatus.FAILED
            raise

        self.status = RuntimeStatus.RUNNING
        logger.info(
            "runtime_started",
            side=self.side.value,
            modules=len(order),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return order

    async def stop(self) -> Optional[PhaseReport]:
        """Stop every running module in reverse order and release subscriptions."""
        if self.status in (RuntimeStatus.IDLE, RuntimeStatus.STOPPED):
            logger.warning("runtime_not_running", status=self.status.value)
            return None

        self.status = RuntimeStatus.STOPPING
        cancelled = await self.retry_engine.cancel_background()
        if cancelled:
            logger.info("background_retries_cancelled", count=cancelled)

        try:
            report = await self.lifecycle.run_phase(Phase.STOP, list(reversed(self.order)))
            self.reports[Phase.STOP] = report
            return report
        finally:
            for release in self._subscriptions:
                release()
            self._subscriptions.clear()
            self.module_loaded.disconnect_all()
            self.global_error.disconnect_all()
            self.status = RuntimeStatus.STOPPED
            logger.info("runtime_stopped", side=self.side.value)

    async def run_protected(
        self,
        module_name: str,
        operation: Callable[[], Any],
        on_retry: Optional[RetryObserver] = None,
    ) -> Any:
        """Run an operation of a live module under its runtime retry policy."""
        return await self.retry_engine.execute(
            operation,
            module_name,
            Phase.RUNTIME,
            self.config.descriptor(module_name),
            on_retry=on_retry,
        )

    def invalidate(self, prefix: Optional[str] = None) -> List[str]:
        """Forget modules under ``prefix`` (or all), including loaded instances."""
        removed = self.loader.invalidate(prefix)
        prune(self.cache, set(removed))
        self.order = [name for name in self.order if name not in removed]
        return removed

    def get(self, name: str) -> Optional[Any]:
        return self.loader.cached(name)

    def find(self, path: str) -> Optional[RegistryEntry]:
        return find(self.cache, path)

    def _validate(self) -> None:
        problems = validate_config(self.config, self.side)
        if not problems:
            return
        if self.config.strict_validation:
            raise ConfigError("Config validation failed", problems=problems)
        for problem in problems:
            logger.warning("config_problem", problem=problem)
            self.on_error(problem, source="validation")

    def _discover(self) -> ModuleCache:
        if self.source is not None:
            return discover(self.source, self.registry, side=self.side)

        paths = self.config.folder_paths
        primary = paths.server if self.side is Location.SERVER else paths.client
        if not primary:
            raise ConfigError(f"No module package configured for the {self.side.value} side")
        try:
            tree = tree_from_package(primary)
        except ImportError as exc:
            raise ConfigError(f"Module package {primary} cannot be imported") from exc
        cache = discover(tree, self.registry, side=self.side)

        for package in paths.shared:
            root = package.rsplit(".", 1)[-1]
            try:
                shared_tree = tree_from_package(package)
            except ImportError as exc:
                logger.warning("shared_package_unavailable", package=package, error=str(exc))
                self.on_error(f"Shared package {package} unavailable: {exc}", source="discovery")
                continue
            cache[root] = discover(shared_tree, self.registry, side=self.side, prefix=root)
        return cache

    def _resolve(self) -> Optional[List[str]]:
        names = collect_module_names(self.cache)
        order = resolve_order(
            names,
            self.config.dependencies_of,
            strict=self.config.strict_validation,
            known=self.config.modules,
        )
        if order is None:
            message = "Dependency cycle detected; no modules were loaded"
            logger.error("runtime_resolution_failed", modules=len(names))
            self.on_error(message, source="resolver")
        return order
