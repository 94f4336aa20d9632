"""
Retry option models and the layered merge that produces effective options.

Options resolve from most general to most specific: the built-in default,
the global bucket (``general`` in the foreground, ``background`` once a
module's retries have escalated), the global phase bucket, and finally the
module's own overrides in the same order.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from modhost.core.config import Settings


class Phase(str, Enum):
    """Named stage of a module's lifecycle"""

    LOAD = "load"
    INIT = "init"
    START = "start"
    STOP = "stop"
    RUNTIME = "runtime"


class BackoffKind(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class RetryOptions(BaseModel):
    """Fully resolved retry policy for one attempt cycle."""

    model_config = ConfigDict(frozen=True)

    initial_wait: float = Field(default=1.0, ge=0)
    max_attempts: int = Field(default=5, ge=1)
    print_warning: bool = True
    jitter: bool = False
    backoff_strategy: BackoffKind = BackoffKind.EXPONENTIAL

    def merged(self, *patches: Optional["RetryPatch"]) -> "RetryOptions":
        update = {}
        for patch in patches:
            if patch is not None:
                update.update(patch.model_dump(exclude_none=True))
        # model_copy skips validation, so re-validate the merged values
        return RetryOptions.model_validate({**self.model_dump(), **update})


class RetryPatch(BaseModel):
    """Partial retry options; unset fields fall through to the layer below."""

    model_config = ConfigDict(extra="forbid")

    initial_wait: Optional[float] = Field(default=None, ge=0)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    print_warning: Optional[bool] = None
    jitter: Optional[bool] = None
    backoff_strategy: Optional[BackoffKind] = None


class RetryBuckets(BaseModel):
    """Global retry buckets keyed by escalation level and phase."""

    model_config = ConfigDict(extra="forbid")

    general: RetryPatch = Field(default_factory=RetryPatch)
    background: RetryPatch = Field(default_factory=RetryPatch)
    load: RetryPatch = Field(default_factory=RetryPatch)
    init: RetryPatch = Field(default_factory=RetryPatch)
    start: RetryPatch = Field(default_factory=RetryPatch)
    stop: RetryPatch = Field(default_factory=RetryPatch)
    runtime: RetryPatch = Field(default_factory=RetryPatch)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryBuckets":
        lifecycle = RetryPatch(
            max_attempts=settings.LIFECYCLE_RETRY_MAX_ATTEMPTS,
            backoff_strategy=BackoffKind.FIXED,
        )
        return cls(
            general=RetryPatch(
                initial_wait=settings.RETRY_INITIAL_WAIT_SECONDS,
                max_attempts=settings.RETRY_MAX_ATTEMPTS,
                print_warning=settings.RETRY_PRINT_WARNING,
                jitter=settings.RETRY_USE_JITTER,
                backoff_strategy=BackoffKind.EXPONENTIAL,
            ),
            background=RetryPatch(
                initial_wait=settings.BACKGROUND_RETRY_INITIAL_WAIT_SECONDS,
                max_attempts=settings.BACKGROUND_RETRY_MAX_ATTEMPTS,
                jitter=settings.BACKGROUND_RETRY_USE_JITTER,
                backoff_strategy=BackoffKind.EXPONENTIAL,
            ),
            start=lifecycle,
            stop=lifecycle,
        )

    def for_phase(self, phase: Phase) -> RetryPatch:
        return getattr(self, Phase(phase).value)


class ModuleRetryOverrides(BaseModel):
    """Per-module retry overrides, layered over the global buckets."""

    model_config = ConfigDict(extra="forbid")

    default: Optional[RetryPatch] = None
    background: Optional[RetryPatch] = None
    load: Optional[RetryPatch] = None
    init: Optional[RetryPatch] = None
    start: Optional[RetryPatch] = None
    stop: Optional[RetryPatch] = None
    runtime: Optional[RetryPatch] = None

    def for_phase(self, phase: Phase) -> Optional[RetryPatch]:
        return getattr(self, Phase(phase).value)


DEFAULT_RETRY_OPTIONS = RetryOptions()


def resolve_retry_options(
    buckets: RetryBuckets,
    phase: Phase,
    *,
    background: bool = False,
    overrides: Optional[ModuleRetryOverrides] = None,
) -> RetryOptions:
    """Merge every applicable layer into the effective options for ``phase``."""
    layers = [
        buckets.background if background else buckets.general,
        buckets.for_phase(phase),
    ]
    if overrides is not None:
        layers.append(overrides.default)
        if background:
            layers.append(overrides.background)
        layers.append(overrides.for_phase(phase))
    return DEFAULT_RETRY_OPTIONS.merged(*layers)
