from .backoff import compute_wait, proportional_jitter
from .options import (
    DEFAULT_RETRY_OPTIONS,
    BackoffKind,
    ModuleRetryOverrides,
    Phase,
    RetryBuckets,
    RetryOptions,
    RetryPatch,
    resolve_retry_options,
)
from .strategies import ExponentialBackoffStrategy, FixedBackoffStrategy, strategy_for

__all__ = [
    "BackoffKind",
    "DEFAULT_RETRY_OPTIONS",
    "ExponentialBackoffStrategy",
    "FixedBackoffStrategy",
    "ModuleRetryOverrides",
    "Phase",
    "RetryBuckets",
    "RetryOptions",
    "RetryPatch",
    "compute_wait",
    "proportional_jitter",
    "resolve_retry_options",
    "strategy_for",
]
