from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from modhost.core.config import settings


class _RuntimeMetrics:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.retry_attempts_total = Counter(
            "modhost_retry_attempts_total",
            "Failed attempts observed by the retry engine",
            ["phase"],
        )
        self.retry_exhausted_total = Counter(
            "modhost_retry_exhausted_total",
            "Operations that failed after exhausting their retry policy",
            ["phase", "critical"],
        )
        self.retry_escalations_total = Counter(
            "modhost_retry_escalations_total",
            "Operations moved from foreground to background retries",
            ["phase", "mode"],
        )
        self.phase_outcomes_total = Counter(
            "modhost_phase_outcomes_total",
            "Per-module phase outcomes",
            ["phase", "outcome"],
        )
        self.phase_duration_seconds = Histogram(
            "modhost_phase_duration_seconds",
            "Wall time of a full lifecycle phase chain",
            ["phase"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 15, 60],
        )
        self.recovery_queue_depth = Gauge(
            "modhost_recovery_queue_depth",
            "Entries waiting in the recovery queue",
        )
        self.recovery_drained_total = Counter(
            "modhost_recovery_drained_total",
            "Recovery queue entries drained",
            ["outcome"],
        )
        self.errors_total = Counter(
            "modhost_errors_total",
            "Runtime errors by category and severity",
            ["category", "severity"],
        )

    def inc_attempt_failure(self, phase: str) -> None:
        if self.enabled:
            self.retry_attempts_total.labels(phase=phase).inc()

    def inc_exhausted(self, phase: str, critical: bool) -> None:
        if self.enabled:
            self.retry_exhausted_total.labels(
                phase=phase, critical=str(critical).lower()
            ).inc()

    def inc_escalation(self, phase: str, mode: str) -> None:
        if self.enabled:
            self.retry_escalations_total.labels(phase=phase, mode=mode).inc()

    def inc_phase_outcome(self, phase: str, outcome: str) -> None:
        if self.enabled:
            self.phase_outcomes_total.labels(phase=phase, outcome=outcome).inc()

    def observe_phase(self, phase: str, seconds: float) -> None:
        if self.enabled:
            self.phase_duration_seconds.labels(phase=phase).observe(seconds)

    def set_queue_depth(self, depth: int) -> None:
        if self.enabled:
            self.recovery_queue_depth.set(depth)

    def inc_drained(self, outcome: str) -> None:
        if self.enabled:
            self.recovery_drained_total.labels(outcome=outcome).inc()

    def inc_error(self, category: str, severity: str) -> None:
        if self.enabled:
            self.errors_total.labels(category=category, severity=severity).inc()


runtime_metrics = _RuntimeMetrics(enabled=settings.METRICS_ENABLED)
