import pytest
from pydantic import ValidationError

from modhost.core.config import Settings
from modhost.utils.resilience.retry import (
    DEFAULT_RETRY_OPTIONS,
    BackoffKind,
    ModuleRetryOverrides,
    Phase,
    RetryBuckets,
    RetryPatch,
    resolve_retry_options,
)


@pytest.fixture
def buckets():
    return RetryBuckets(
        general=RetryPatch(initial_wait=1, max_attempts=5),
        background=RetryPatch(initial_wait=2, max_attempts=10, jitter=True),
        start=RetryPatch(max_attempts=3, backoff_strategy=BackoffKind.FIXED),
    )


def test_empty_buckets_fall_back_to_builtin_default():
    options = resolve_retry_options(RetryBuckets(), Phase.INIT)
    assert options == DEFAULT_RETRY_OPTIONS
    assert options.max_attempts == 5
    assert options.backoff_strategy is BackoffKind.EXPONENTIAL


def test_foreground_uses_general_bucket(buckets):
    options = resolve_retry_options(buckets, Phase.INIT)
    assert options.initial_wait == 1
    assert options.max_attempts == 5
    assert options.jitter is False


def test_background_uses_background_bucket(buckets):
    options = resolve_retry_options(buckets, Phase.INIT, background=True)
    assert options.initial_wait == 2
    assert options.max_attempts == 10
    assert options.jitter is True


def test_phase_bucket_overrides_general_and_background(buckets):
    foreground = resolve_retry_options(buckets, Phase.START)
    background = resolve_retry_options(buckets, Phase.START, background=True)
    assert foreground.max_attempts == 3
    assert foreground.backoff_strategy is BackoffKind.FIXED
    assert background.max_attempts == 3
    assert background.initial_wait == 2


def test_module_overrides_win(buckets):
    overrides = ModuleRetryOverrides(
        default=RetryPatch(max_attempts=7, print_warning=False),
        background=RetryPatch(initial_wait=9),
        init=RetryPatch(max_attempts=2),
    )
    init = resolve_retry_options(buckets, Phase.INIT, overrides=overrides)
    load = resolve_retry_options(buckets, Phase.LOAD, overrides=overrides)
    init_background = resolve_retry_options(
        buckets, Phase.INIT, background=True, overrides=overrides
    )

    assert init.max_attempts == 2
    assert init.print_warning is False
    assert init.initial_wait == 1
    assert load.max_attempts == 7
    assert init_background.initial_wait == 9
    assert init_background.max_attempts == 2


def test_buckets_from_settings():
    settings = Settings(
        RETRY_INITIAL_WAIT_SECONDS=0.5,
        BACKGROUND_RETRY_MAX_ATTEMPTS=4,
        LIFECYCLE_RETRY_MAX_ATTEMPTS=2,
    )
    buckets = RetryBuckets.from_settings(settings)

    assert resolve_retry_options(buckets, Phase.INIT).initial_wait == 0.5
    assert resolve_retry_options(buckets, Phase.INIT, background=True).max_attempts == 4
    stop = resolve_retry_options(buckets, Phase.STOP)
    assert stop.max_attempts == 2
    assert stop.backoff_strategy is BackoffKind.FIXED


def test_patch_rejects_bad_values():
    with pytest.raises(ValidationError):
        RetryPatch(initial_wait=-1)
    with pytest.raises(ValidationError):
        RetryPatch(max_attempts=0)
    with pytest.raises(ValidationError):
        RetryPatch(backoff_strategy="linear")
    with pytest.raises(ValidationError):
        RetryPatch(retries=3)
