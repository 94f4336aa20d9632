from __future__ import annotations

import random
from typing import Callable, Optional

from modhost.core.config import settings

from .options import RetryOptions
from .strategies import strategy_for


def proportional_jitter(
    delay: float,
    ratio: Optional[float] = None,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Scale a delay by a random factor in [1 - ratio, 1 + ratio].

    With the default ratio of 0.1 a 4s wait lands anywhere in [3.6, 4.4].
    """
    ratio = settings.RETRY_JITTER_RATIO if ratio is None else ratio
    return delay * (1.0 - ratio + rng() * 2.0 * ratio)


def compute_wait(
    options: RetryOptions,
    attempt: int,
    *,
    rng: Callable[[], float] = random.random,
    min_wait: Optional[float] = None,
) -> float:
    """Seconds to wait after failed ``attempt`` (1-based) before the next one."""
    delay = strategy_for(options).delay_for(attempt)
    if options.jitter:
        delay = proportional_jitter(delay, rng=rng)
    floor = settings.RETRY_MIN_WAIT_SECONDS if min_wait is None else min_wait
    return max(floor, delay)
