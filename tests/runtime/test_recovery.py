from unittest.mock import patch

import pytest

from modhost.services.runtime import (
    ModuleCapabilities,
    ModuleHandle,
    ModuleState,
    Phase,
    PriorityLevel,
    QueueEntry,
    RecoveryQueue,
    Registry,
)
from modhost.utils.resilience.retry import RetryOptions

pytestmark = pytest.mark.asyncio


def _registry(*modules, state=ModuleState.LOADED):
    registry = Registry()
    for module in modules:
        entry = registry.register(module.name, ModuleHandle(path=module.name, factory=object))
        entry.instance = module
        entry.capabilities = ModuleCapabilities.inspect(module)
        for step in (ModuleState.LOADED, ModuleState.INITIALIZED):
            registry.transition(module.name, step)
            if step is state:
                break
    return registry


def _entry(module, priority=PriorityLevel.NORMAL, phase=Phase.INIT, on_success=None):
    return QueueEntry(
        priority=priority,
        module_name=module.name,
        phase=phase,
        operation=getattr(module, phase.value),
        retry_count=1,
        options=RetryOptions(),
        on_success=on_success,
    )


async def test_drain_runs_critical_first_then_fifo(calls, make_module, errors):
    first, second, urgent = make_module("first"), make_module("second"), make_module("urgent")
    registry = _registry(first, second, urgent)
    queue = RecoveryQueue(registry, error_sink=errors.append)

    queue.enqueue(_entry(first))
    queue.enqueue(_entry(second))
    queue.enqueue(_entry(urgent, priority=PriorityLevel.CRITICAL))
    assert len(queue) == 3

    report = await queue.drain()

    assert calls == ["init:urgent", "init:first", "init:second"]
    assert report.recovered == ["urgent", "first", "second"]
    assert report.total == 3
    assert len(queue) == 0
    assert queue.drained is True
    for name in ("first", "second", "urgent"):
        assert registry.get(name).recovered_phase is Phase.INIT
    assert errors == []


async def test_recovered_init_keeps_committed_state(make_module, errors):
    module = make_module("a")
    registry = _registry(module)
    queue = RecoveryQueue(registry, error_sink=errors.append)
    seen = []

    def on_success(result):
        seen.append((result, registry.get("a").state))
        registry.transition("a", ModuleState.INITIALIZED)

    queue.enqueue(_entry(module, on_success=on_success))
    await queue.drain()

    assert seen == [("init", ModuleState.LOADED)]
    assert registry.get("a").state is ModuleState.INITIALIZED
    assert registry.get("a").recovered_phase is Phase.INIT


async def test_recovered_start_is_flagged_recovered(make_module, errors):
    module = make_module("a")
    registry = _registry(module, state=ModuleState.INITIALIZED)
    queue = RecoveryQueue(registry, error_sink=errors.append)

    queue.enqueue(
        _entry(
            module,
            phase=Phase.START,
            on_success=lambda _result: registry.transition("a", ModuleState.STARTED),
        )
    )
    report = await queue.drain()

    assert report.recovered == ["a"]
    assert registry.get("a").state is ModuleState.RECOVERED
    assert registry.get("a").recovered_phase is Phase.START


async def test_start_without_commit_is_not_flagged(make_module, errors):
    module = make_module("a")
    registry = _registry(module, state=ModuleState.INITIALIZED)
    queue = RecoveryQueue(registry, error_sink=errors.append)

    queue.enqueue(_entry(module, phase=Phase.START))
    await queue.drain()

    assert registry.get("a").state is ModuleState.INITIALIZED
    assert registry.get("a").recovered_phase is Phase.START


@patch("modhost.services.runtime.recovery.logger")
async def test_drain_logs_time_spent_queued(mock_logger, make_module):
    module = make_module("a")
    queue = RecoveryQueue(_registry(module))
    queue.enqueue(_entry(module))

    await queue.drain()

    succeeded = [
        call
        for call in mock_logger.info.call_args_list
        if call.args and call.args[0] == "recovery_entry_succeeded"
    ]
    assert len(succeeded) == 1
    assert succeeded[0].kwargs["module"] == "a"
    assert succeeded[0].kwargs["waited_s"] >= 0


@patch("modhost.services.runtime.recovery.log_error")
async def test_failed_entry_logs_time_spent_queued(mock_log_error, make_module):
    module = make_module("a", init=-1)
    queue = RecoveryQueue(_registry(module))
    queue.enqueue(_entry(module))

    await queue.drain()

    mock_log_error.assert_called_once()
    assert mock_log_error.call_args.kwargs["retry_count"] == 1
    assert mock_log_error.call_args.kwargs["waited_s"] >= 0


async def test_failed_entry_is_reported_once(make_module, errors):
    broken, healthy = make_module("broken", start=-1), make_module("healthy")
    registry = _registry(broken, healthy)
    queue = RecoveryQueue(registry, error_sink=errors.append)

    queue.enqueue(_entry(broken, phase=Phase.START))
    queue.enqueue(_entry(healthy, phase=Phase.START))
    report = await queue.drain()

    assert report.failed == ["broken"]
    assert report.recovered == ["healthy"]
    assert broken.calls.count("start:broken") == 1
    assert registry.get("broken").state is ModuleState.ERROR
    assert registry.get("broken").error == "broken start boom"
    assert broken.errors == ["broken start boom"]
    assert errors == ["Recovery of Start failed for broken: broken start boom"]


async def test_failing_success_callback_counts_as_failure(make_module, errors):
    module = make_module("a")
    registry = _registry(module)
    queue = RecoveryQueue(registry, error_sink=errors.append)

    def on_success(_result):
        raise RuntimeError("commit failed")

    queue.enqueue(_entry(module, on_success=on_success))
    report = await queue.drain()

    assert report.failed == ["a"]
    assert registry.get("a").state is ModuleState.ERROR


async def test_drain_empty_queue():
    queue = RecoveryQueue(Registry())
    report = await queue.drain()
    assert report.total == 0
    assert queue.drained is True
