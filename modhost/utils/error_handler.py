"""
Error handling for the module runtime.

This module provides the runtime's exception taxonomy, error categorization,
and a small handler that logs failures at a severity-derived level and records
them in the runtime metrics.
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from modhost.utils.logger import get_logger
from modhost.utils.resilience.metrics import runtime_metrics

logger = get_logger(__name__)


class ErrorSeverity(str, Enum):
    """Error severity levels for categorization and alerting"""

    LOW = "low"  # Minor issues, logging only
    MEDIUM = "medium"  # Recoverable module failures
    HIGH = "high"  # Critical module failures, chain aborted
    CRITICAL = "critical"  # Runtime cannot continue


class ErrorCategory(str, Enum):
    """Error categories for systematic handling"""

    CONFIGURATION = "configuration"  # Malformed descriptors or options
    DEPENDENCY = "dependency"  # Static or reentrant dependency cycles
    LIFECYCLE = "lifecycle"  # A phase operation failed
    RECOVERY = "recovery"  # A deferred recovery attempt failed
    SYSTEM = "system"  # Anything unexpected


class ErrorContext:
    """Container for error context information"""

    def __init__(
        self,
        error: Exception,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        technical_details: Optional[Dict[str, Any]] = None,
        module_name: Optional[str] = None,
        phase: Optional[str] = None,
        recovery_suggestions: Optional[list] = None,
    ):
        self.error = error
        self.severity = severity
        self.category = category
        self.technical_details = technical_details or {}
        self.module_name = module_name
        self.phase = phase
        self.recovery_suggestions = recovery_suggestions or []
        self.timestamp = datetime.now(timezone.utc)
        self.error_id = f"err_{int(self.timestamp.timestamp())}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging/serialization"""
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "error_type": type(self.error).__name__,
            "error_message": str(self.error),
            "severity": self.severity.value,
            "category": self.category.value,
            "technical_details": self.technical_details,
            "module": self.module_name,
            "phase": self.phase,
            "recovery_suggestions": self.recovery_suggestions,
            "traceback": traceback.format_exc()
            if self.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]
            else None,
        }


# === Custom Exception Classes ===


class ModuleRuntimeError(Exception):
    """Base exception for runtime errors"""

    retryable = True

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        technical_details: Optional[Dict[str, Any]] = None,
        recovery_suggestions: Optional[list] = None,
    ):
        super().__init__(message)
        self.severity = severity
        self.category = category
        self.technical_details = technical_details or {}
        self.recovery_suggestions = recovery_suggestions or []


class ConfigError(ModuleRuntimeError):
    """Raised when a descriptor, option set or discovery root is invalid"""

    retryable = False

    def __init__(self, message: str, problems: Optional[List[str]] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            recovery_suggestions=["Check the module descriptors in the config"],
            **kwargs,
        )
        self.problems = problems or []


class CycleError(ModuleRuntimeError):
    """Raised for static dependency cycles and reentrant loads"""

    retryable = False

    def __init__(self, message: str, modules: Optional[List[str]] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.DEPENDENCY,
            technical_details={"modules": list(modules or [])},
            recovery_suggestions=["Break the cycle in the declared dependencies"],
            **kwargs,
        )
        self.modules = list(modules or [])


class PhaseError(ModuleRuntimeError):
    """Raised when a module phase fails after exhausting its retry policy"""

    def __init__(
        self,
        module_name: str,
        phase: str,
        message: str,
        attempts: int = 0,
        critical: bool = False,
        **kwargs,
    ):
        super().__init__(
            f"{phase.capitalize()} failed for {module_name}: {message}",
            severity=ErrorSeverity.HIGH if critical else ErrorSeverity.MEDIUM,
            category=ErrorCategory.LIFECYCLE,
            technical_details={"attempts": attempts, "critical": critical},
            **kwargs,
        )
        self.module_name = module_name
        self.phase = phase
        self.reason = message
        self.attempts = attempts
        self.critical = critical


class QueueError(ModuleRuntimeError):
    """Raised when a recovery queue entry fails its single drain attempt"""

    retryable = False

    def __init__(self, module_name: str, phase: str, message: str, **kwargs):
        super().__init__(
            f"Recovery of {phase.capitalize()} failed for {module_name}: {message}",
            category=ErrorCategory.RECOVERY,
            **kwargs,
        )
        self.module_name = module_name
        self.phase = phase
        self.reason = message


# === Error Handler ===


class ErrorHandler:
    """Categorizes, logs and counts runtime failures"""

    def handle_error(
        self, error: Exception, context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        context = context or {}
        error_context = self._categorize_error(error, context)
        self._log_error(error_context)
        runtime_metrics.inc_error(
            error_context.category.value, error_context.severity.value
        )
        return error_context

    def _categorize_error(
        self, error: Exception, context: Dict[str, Any]
    ) -> ErrorContext:
        if isinstance(error, ModuleRuntimeError):
            return ErrorContext(
                error=error,
                severity=error.severity,
                category=error.category,
                technical_details={**error.technical_details, **context},
                module_name=getattr(error, "module_name", context.get("module")),
                phase=getattr(error, "phase", context.get("phase")),
                recovery_suggestions=error.recovery_suggestions,
            )

        return ErrorContext(
            error=error,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.SYSTEM,
            technical_details=context,
            module_name=context.get("module"),
            phase=context.get("phase"),
        )

    def _log_error(self, error_context: ErrorContext) -> None:
        log_data = {
            "error_id": error_context.error_id,
            "error_type": type(error_context.error).__name__,
            "error": str(error_context.error),
            "category": error_context.category.value,
            "severity": error_context.severity.value,
            "module": error_context.module_name,
            "phase": error_context.phase,
            "technical_details": error_context.technical_details,
        }

        if error_context.severity == ErrorSeverity.CRITICAL:
            logger.critical("runtime_error", **log_data)
        elif error_context.severity == ErrorSeverity.HIGH:
            logger.error("runtime_error", **log_data)
        elif error_context.severity == ErrorSeverity.MEDIUM:
            logger.warning("runtime_error", **log_data)
        else:
            logger.info("runtime_error", **log_data)


error_handler = ErrorHandler()


def log_error(error: Exception, **context: Any) -> ErrorContext:
    """Log an error through the shared handler."""
    return error_handler.handle_error(error, context)
