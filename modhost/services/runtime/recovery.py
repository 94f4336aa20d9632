"""
Recovery queue for deferred retry attempts.

When recovery-queue mode is on, the retry engine does not schedule a module's
background retries itself; it captures the next attempt here instead. The
runtime drains the queue exactly once after startup: critical entries first,
one attempt each, strictly in sequence. Nothing is re-queued, and escalations
after the drain bypass the queue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Callable, List, Optional

from modhost.utils.error_handler import QueueError, log_error
from modhost.utils.logger import get_logger
from modhost.utils.resilience.metrics import runtime_metrics
from modhost.utils.resilience.retry import Phase, RetryOptions

from .hooks import call_maybe_async, run_failure_hook
from .models import ModuleState
from .registry import Registry

logger = get_logger(__name__)


class PriorityLevel(IntEnum):
    """Queue priorities (lower number drains first)"""

    CRITICAL = 1
    NORMAL = 5


@dataclass
class QueueEntry:
    priority: int
    module_name: str
    phase: Phase
    operation: Callable[[], Any]
    retry_count: int
    options: RetryOptions
    on_success: Optional[Callable[[Any], Any]] = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RecoveryReport:
    recovered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.recovered) + len(self.failed)


class RecoveryQueue:
    def __init__(
        self,
        registry: Registry,
        error_sink: Optional[Callable[[str], None]] = None,
    ):
        self._registry = registry
        self._error_sink = error_sink
        self._entries: List[QueueEntry] = []
        self.drained = False

    def enqueue(self, entry: QueueEntry) -> None:
        self._entries.append(entry)
        runtime_metrics.set_queue_depth(len(self._entries))
        logger.info(
            "recovery_entry_queued",
            module=entry.module_name,
            phase=entry.phase.value,
            priority=entry.priority,
            retry_count=entry.retry_count,
        )

    def entries(self) -> List[QueueEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def drain(self) -> RecoveryReport:
        """
        Run every queued attempt once, in ascending priority order.

        The sort is stable, so entries of equal priority keep their enqueue
        order. The queue is empty afterwards whatever the outcomes.
        """
        batch = sorted(self._entries, key=lambda entry: entry.priority)
        self._entries.clear()
        runtime_metrics.set_queue_depth(0)
        report = RecoveryReport()

        for entry in batch:
            try:
                result = await call_maybe_async(entry.operation)
                if entry.on_success is not None:
                    await call_maybe_async(entry.on_success, result)
            except Exception as exc:  # noqa: BLE001
                await self._fail(entry, str(exc) or type(exc).__name__)
                report.failed.append(entry.module_name)
                continue

            self._mark_recovered(entry)
            runtime_metrics.inc_drained("recovered")
            logger.info(
                "recovery_entry_succeeded",
                module=entry.module_name,
                phase=entry.phase.value,
                waited_s=_waited(entry),
            )
            report.recovered.append(entry.module_name)

        self.drained = True
        logger.info(
            "recovery_queue_drained",
            total=report.total,
            recovered=len(report.recovered),
            failed=len(report.failed),
        )
        return report

    def _mark_recovered(self, entry: QueueEntry) -> None:
        # the phase commit already set the state; a recovered start is also flagged
        registry_entry = self._registry.get(entry.module_name)
        if registry_entry is None:
            return
        registry_entry.recovered_phase = entry.phase
        if entry.phase is Phase.START and registry_entry.state is ModuleState.STARTED:
            self._registry.transition(entry.module_name, ModuleState.RECOVERED)

    async def _fail(self, entry: QueueEntry, message: str) -> None:
        error = QueueError(entry.module_name, entry.phase.value, message)
        log_error(error, retry_count=entry.retry_count, waited_s=_waited(entry))
        runtime_metrics.inc_drained("failed")
        self._registry.mark_error(entry.module_name, message)
        await run_failure_hook(self._registry.get(entry.module_name), message)
        if self._error_sink is not None:
            self._error_sink(str(error))


def _waited(entry: QueueEntry) -> float:
    return round((datetime.now(timezone.utc) - entry.enqueued_at).total_seconds(), 3)
