"""
Retry engine for module phase operations.

Runs one operation under the module's effective retry policy. The first
attempts run in the foreground and block the calling chain. After the first
failure a non-critical module (or any module when critical background
retries are enabled) escalates to the background bucket: its remaining
attempts are either handed to the recovery queue (until it has drained) or
run by a detached task, and the calling chain moves on.
"""

from __future__ import annotations

import asyncio
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

from modhost.utils.error_handler import PhaseError, log_error
from modhost.utils.logger import add_module_context, get_logger
from modhost.utils.resilience.metrics import runtime_metrics
from modhost.utils.resilience.retry import (
    Phase,
    RetryOptions,
    compute_wait,
    resolve_retry_options,
)

from .config import RuntimeConfig
from .hooks import call_maybe_async, run_failure_hook
from .models import ModuleDescriptor
from .recovery import PriorityLevel, QueueEntry, RecoveryQueue
from .registry import Registry

logger = get_logger(__name__)

Operation = Callable[[], Any]
RetryObserver = Callable[[int, str], Any]
SuccessCallback = Callable[[Any], Any]


class RetryOutcome(str, Enum):
    """Provisional results of an execute call that did not succeed inline"""

    FAILED = "failed"
    QUEUED = "queued"
    SCHEDULED = "scheduled"


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class RetryEngine:
    def __init__(
        self,
        registry: Registry,
        config: RuntimeConfig,
        recovery_queue: RecoveryQueue,
        error_sink: Optional[Callable[[str], None]] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Callable[[], float] = random.random,
    ):
        self._registry = registry
        self._config = config
        self._queue = recovery_queue
        self._error_sink = error_sink
        self._sleep = sleep
        self._rng = rng
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def pending_background(self) -> int:
        return len(self._background_tasks)

    def effective_options(
        self,
        phase: Phase,
        descriptor: Optional[ModuleDescriptor] = None,
        *,
        background: bool = False,
    ) -> RetryOptions:
        return resolve_retry_options(
            self._config.retry,
            phase,
            background=background,
            overrides=descriptor.retry if descriptor else None,
        )

    async def execute(
        self,
        operation: Operation,
        module_name: str,
        phase: Phase,
        descriptor: Optional[ModuleDescriptor] = None,
        *,
        on_retry: Optional[RetryObserver] = None,
        on_success: Optional[SuccessCallback] = None,
    ) -> Any:
        """
        Run ``operation`` until it succeeds or the policy is exhausted.

        Returns the operation's result on inline success, ``RetryOutcome.QUEUED``
        or ``RetryOutcome.SCHEDULED`` once retries move off the calling chain,
        and ``RetryOutcome.FAILED`` on terminal failure of a non-critical module.
        ``on_success`` runs on every success, inline or deferred.

        Raises:
            PhaseError: terminal failure of a critical module.
        """
        critical = bool(descriptor and descriptor.critical)
        background = False
        options = self.effective_options(phase, descriptor)
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await call_maybe_async(operation)
            except Exception as exc:  # noqa: BLE001
                message = _describe(exc)
                await self._observe_failure(
                    on_retry, module_name, phase, attempt, message, options
                )

                if not background and (
                    not critical or self._config.critical_background_retries
                ):
                    background = True
                    options = self.effective_options(
                        phase, descriptor, background=True
                    )

                if attempt >= options.max_attempts or not getattr(
                    exc, "retryable", True
                ):
                    return await self._finalize(
                        module_name, phase, attempt, message, critical, inline=True
                    )

                wait = compute_wait(options, attempt, rng=self._rng)
                if background:
                    return self._detach(
                        operation,
                        module_name,
                        phase,
                        descriptor,
                        critical,
                        attempt,
                        wait,
                        options,
                        on_retry,
                        on_success,
                    )
                await self._wait(wait)
                continue

            await self._succeed(module_name, phase, attempt, result, on_success)
            return result

    def _detach(
        self,
        operation: Operation,
        module_name: str,
        phase: Phase,
        descriptor: Optional[ModuleDescriptor],
        critical: bool,
        attempt: int,
        wait: float,
        options: RetryOptions,
        on_retry: Optional[RetryObserver],
        on_success: Optional[SuccessCallback],
    ) -> RetryOutcome:
        # the queue drains once; later escalations retry as detached tasks
        if self._config.use_recovery_queue and not self._queue.drained:
            self._queue.enqueue(
                QueueEntry(
                    priority=PriorityLevel.CRITICAL if critical else PriorityLevel.NORMAL,
                    module_name=module_name,
                    phase=phase,
                    operation=operation,
                    retry_count=attempt,
                    options=options,
                    on_success=on_success,
                )
            )
            runtime_metrics.inc_escalation(phase.value, "queued")
            return RetryOutcome.QUEUED

        task = asyncio.create_task(
            self._run_background(
                operation,
                module_name,
                phase,
                descriptor,
                critical,
                attempt,
                wait,
                on_retry,
                on_success,
            ),
            name=f"retry:{phase.value}:{module_name}",
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._background_done)
        runtime_metrics.inc_escalation(phase.value, "background")
        logger.info(
            "retry_moved_to_background",
            next_delay_s=round(wait, 3),
            **add_module_context(module_name, phase.value, attempt),
        )
        return RetryOutcome.SCHEDULED

    async def _run_background(
        self,
        operation: Operation,
        module_name: str,
        phase: Phase,
        descriptor: Optional[ModuleDescriptor],
        critical: bool,
        attempt: int,
        wait: float,
        on_retry: Optional[RetryObserver],
        on_success: Optional[SuccessCallback],
    ) -> None:
        options = self.effective_options(phase, descriptor, background=True)
        while True:
            await self._wait(wait)
            attempt += 1
            try:
                result = await call_maybe_async(operation)
            except Exception as exc:  # noqa: BLE001
                message = _describe(exc)
                await self._observe_failure(
                    on_retry, module_name, phase, attempt, message, options
                )
                if attempt >= options.max_attempts or not getattr(
                    exc, "retryable", True
                ):
                    # the chain has moved on; a critical failure here is reported, not raised
                    await self._finalize(
                        module_name, phase, attempt, message, critical, inline=False
                    )
                    return
                wait = compute_wait(options, attempt, rng=self._rng)
                continue

            await self._succeed(module_name, phase, attempt, result, on_success)
            return

    def _background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_retry_crashed", task=task.get_name(), error=str(exc))

    async def _wait(self, seconds: float) -> None:
        sleep = self._sleep or asyncio.sleep
        await sleep(seconds)

    async def _observe_failure(
        self,
        on_retry: Optional[RetryObserver],
        module_name: str,
        phase: Phase,
        attempt: int,
        message: str,
        options: RetryOptions,
    ) -> None:
        runtime_metrics.inc_attempt_failure(phase.value)
        if on_retry is not None:
            try:
                await call_maybe_async(on_retry, attempt, message)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "retry_observer_failed",
                    error=str(exc),
                    **add_module_context(module_name, phase.value, attempt),
                )
        if options.print_warning:
            logger.warning(
                "initial_attempt_failed" if attempt == 1 else "retry_attempt",
                max_attempts=options.max_attempts,
                error=message,
                **add_module_context(module_name, phase.value, attempt),
            )

    async def _succeed(
        self,
        module_name: str,
        phase: Phase,
        attempt: int,
        result: Any,
        on_success: Optional[SuccessCallback],
    ) -> None:
        if on_success is not None:
            await call_maybe_async(on_success, result)
        if attempt > 1:
            logger.info(
                "retry_succeeded", **add_module_context(module_name, phase.value, attempt)
            )

    async def _finalize(
        self,
        module_name: str,
        phase: Phase,
        attempts: int,
        message: str,
        critical: bool,
        *,
        inline: bool,
    ) -> RetryOutcome:
        runtime_metrics.inc_exhausted(phase.value, critical)
        self._registry.mark_error(module_name, message)
        await run_failure_hook(self._registry.get(module_name), message)

        error = PhaseError(
            module_name, phase.value, message, attempts=attempts, critical=critical
        )
        log_error(error, attempt=attempts, inline=inline)
        if self._error_sink is not None:
            self._error_sink(str(error))

        if critical and inline:
            raise error
        return RetryOutcome.FAILED

    async def wait_background(self) -> None:
        """Wait until every detached retry has settled."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def cancel_background(self) -> int:
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)
