"""
In-process broadcast signals.

Fire-and-forget: handlers run synchronously in subscription order, and a
handler that raises is logged without affecting the others or the caller.
"""

from __future__ import annotations

from typing import Any, Callable, List

from modhost.utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[..., Any]


class Signal:
    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: List[Handler] = []

    def connect(self, handler: Handler) -> Callable[[], None]:
        """Subscribe ``handler``; the returned callable unsubscribes it."""
        self._handlers.append(handler)

        def disconnect() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return disconnect

    def fire(self, *args: Any) -> None:
        for handler in list(self._handlers):
            try:
                handler(*args)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "signal_handler_failed",
                    signal=self.name,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(exc),
                )

    def disconnect_all(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)
