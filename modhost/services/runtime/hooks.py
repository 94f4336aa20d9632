from __future__ import annotations

import inspect
from typing import Any, Callable, Optional

from modhost.utils.logger import get_logger

from .models import RegistryEntry

logger = get_logger(__name__)


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call ``func`` and await the result when it is awaitable."""
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def run_failure_hook(entry: Optional[RegistryEntry], message: str) -> None:
    """Invoke the module's own ``on_error`` hook, isolating anything it raises."""
    if entry is None or entry.instance is None:
        return
    hook = entry.capabilities.on_error
    if hook is None:
        return
    try:
        await call_maybe_async(hook, message)
    except Exception as exc:  # noqa: BLE001
        logger.error("failure_hook_raised", module=entry.name, error=str(exc))
