"""
Resilience utilities for the module runtime: retry policies and metrics.

Retry options are pydantic models resolved in layers, backoff strategies turn
them into concrete waits, and every outcome is exported as a Prometheus
metric. Defaults come from `modhost.core.config`.
"""

from .metrics import runtime_metrics
from .retry import (
    BackoffKind,
    ExponentialBackoffStrategy,
    FixedBackoffStrategy,
    Phase,
    RetryBuckets,
    RetryOptions,
    RetryPatch,
    compute_wait,
    resolve_retry_options,
)

__all__ = [
    "BackoffKind",
    "ExponentialBackoffStrategy",
    "FixedBackoffStrategy",
    "Phase",
    "RetryBuckets",
    "RetryOptions",
    "RetryPatch",
    "compute_wait",
    "resolve_retry_options",
    "runtime_metrics",
]
