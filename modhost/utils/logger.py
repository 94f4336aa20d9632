"""
structlog setup for the module runtime.

Hosts that configure structlog themselves keep their setup; otherwise the
runtime installs a console renderer in development and JSON elsewhere.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

from modhost.core.config import settings


def _renderer_chain() -> list[Processor]:
    if settings.is_development:
        return [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer(colors=True)]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def configure_logging() -> None:
    """Route structlog through stdlib logging at ``settings.LOG_LEVEL``."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
        *_renderer_chain(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def ensure_logging() -> None:
    if not structlog.is_configured():
        configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def add_module_context(
    module_name: str, phase: Optional[str] = None, attempt: Optional[int] = None
) -> Dict[str, Any]:
    """Event fields identifying one attempt of one module phase."""
    context: Dict[str, Any] = {"module": module_name}
    if phase:
        context["phase"] = phase
    if attempt is not None:
        context["attempt"] = attempt
    return context
