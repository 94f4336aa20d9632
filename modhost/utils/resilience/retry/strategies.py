from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .options import BackoffKind, RetryOptions


@dataclass
class FixedBackoffStrategy:
    """Waits a constant number of seconds before every retry."""

    delay_seconds: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.delay_seconds


@dataclass
class ExponentialBackoffStrategy:
    """Doubles the wait after every failed attempt."""

    base_delay_seconds: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * 2 ** max(0, attempt - 1)


BackoffStrategy = Union[FixedBackoffStrategy, ExponentialBackoffStrategy]


def strategy_for(options: RetryOptions) -> BackoffStrategy:
    if options.backoff_strategy is BackoffKind.FIXED:
        return FixedBackoffStrategy(delay_seconds=options.initial_wait)
    return ExponentialBackoffStrategy(base_delay_seconds=options.initial_wait)
