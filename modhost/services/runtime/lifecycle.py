"""
Lifecycle orchestration.

Drives one phase across a resolved module order, strictly one module at a
time. Modules whose state or capabilities do not fit the phase are skipped.
A critical module's terminal failure aborts the rest of the chain; every
other failure is recorded and the chain moves on.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Sequence

from modhost.utils.error_handler import PhaseError, log_error
from modhost.utils.logger import get_logger
from modhost.utils.resilience.metrics import runtime_metrics
from modhost.utils.resilience.retry import Phase

from .config import RuntimeConfig
from .loader import ModuleLoader
from .models import ModuleState
from .registry import Registry
from .retry_engine import RetryEngine, RetryOutcome

logger = get_logger(__name__)


class PhaseRule(NamedTuple):
    requires: FrozenSet[ModuleState]
    success: ModuleState


PHASE_RULES: Dict[Phase, PhaseRule] = {
    Phase.INIT: PhaseRule(frozenset({ModuleState.LOADED}), ModuleState.INITIALIZED),
    Phase.START: PhaseRule(frozenset({ModuleState.INITIALIZED}), ModuleState.STARTED),
    Phase.STOP: PhaseRule(
        frozenset({ModuleState.STARTED, ModuleState.RECOVERED}), ModuleState.STOPPED
    ),
}


@dataclass
class PhaseReport:
    phase: Phase
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    aborted_by: Optional[str] = None

    def record(self, name: str, outcome: str) -> None:
        getattr(self, outcome).append(name)
        runtime_metrics.inc_phase_outcome(self.phase.value, outcome)


class LifecycleOrchestrator:
    def __init__(
        self,
        registry: Registry,
        config: RuntimeConfig,
        loader: ModuleLoader,
        retry_engine: RetryEngine,
    ):
        self._registry = registry
        self._config = config
        self._loader = loader
        self._retry = retry_engine

    async def run_phase(self, phase: Phase, order: Sequence[str]) -> PhaseReport:
        """
        Run ``phase`` for every module in ``order``.

        Raises:
            PhaseError: a critical module failed; remaining modules are not run.
        """
        report = PhaseReport(phase=phase)
        started = time.perf_counter()
        logger.info("phase_started", phase=phase.value, modules=len(order))

        try:
            for name in order:
                try:
                    outcome = await self._process(phase, name)
                except PhaseError as exc:
                    report.record(name, "failed")
                    if exc.critical:
                        report.aborted_by = name
                        logger.error(
                            "phase_chain_aborted",
                            phase=phase.value,
                            module=name,
                            error=exc.reason,
                        )
                        raise
                    continue
                except Exception as exc:  # noqa: BLE001
                    log_error(exc, module=name, phase=phase.value)
                    report.record(name, "failed")
                    continue
                report.record(name, outcome)
        finally:
            elapsed = time.perf_counter() - started
            report.duration_ms = round(elapsed * 1000, 2)
            runtime_metrics.observe_phase(phase.value, elapsed)

        logger.info(
            "phase_completed",
            phase=phase.value,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
            deferred=len(report.deferred),
            duration_ms=report.duration_ms,
        )
        return report

    async def _process(self, phase: Phase, name: str) -> str:
        if phase is Phase.LOAD:
            return await self._load(name)

        entry = self._registry.get(name)
        if entry is None or entry.instance is None:
            logger.debug("phase_skipped_not_loaded", phase=phase.value, module=name)
            return "skipped"

        rule = PHASE_RULES[phase]
        if entry.state not in rule.requires:
            logger.debug(
                "phase_skipped_state",
                phase=phase.value,
                module=name,
                state=entry.state.value,
            )
            return "skipped"

        method = entry.capabilities.for_phase(phase)
        if method is None:
            return "skipped"

        def commit(_result: object) -> None:
            if self._registry.transition(name, rule.success):
                logger.info("module_phase_succeeded", phase=phase.value, module=name)

        result = await self._retry.execute(
            method,
            name,
            phase,
            self._config.descriptor(name),
            on_success=commit,
        )
        if result is RetryOutcome.FAILED:
            return "failed"
        if result is RetryOutcome.QUEUED or result is RetryOutcome.SCHEDULED:
            return "deferred"
        return "succeeded"

    async def _load(self, name: str) -> str:
        instance = await self._loader.load(name)
        if instance is not None:
            return "succeeded"
        if self._loader.is_deferred(name):
            return "deferred"

        entry = self._registry.get(name)
        if entry is None or entry.state is not ModuleState.ERROR:
            # unknown, or skipped for this side
            return "skipped"
        if self._config.is_critical(name):
            raise PhaseError(
                name, Phase.LOAD.value, entry.error or "load failed", critical=True
            )
        return "failed"
