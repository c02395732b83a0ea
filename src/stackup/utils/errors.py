"""Error taxonomy and helpers for consistent error reporting."""

import asyncio
import logging
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes recorded in unit results and logs."""

    # Plan errors (fatal, no report)
    CONFIG_ERROR = "CONFIG_ERROR"
    CYCLIC_DEPENDENCY = "CYCLIC_DEPENDENCY"
    UNKNOWN_DEPENDENCY = "UNKNOWN_DEPENDENCY"
    PLAN_FILE_INVALID = "PLAN_FILE_INVALID"

    # Unit errors (recorded per unit)
    START_ACTION_FAILED = "START_ACTION_FAILED"
    PROBE_TIMEOUT = "PROBE_TIMEOUT"
    PROBE_CONNECTION = "PROBE_CONNECTION"
    CANCELLED = "CANCELLED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


# Maximum length for error details
MAX_ERROR_LENGTH = 500


class StackupError(Exception):
    """Base class for all orchestrator errors.

    Attributes:
        message: Human-readable description.
        code: Error code.
        details: Extra context such as unit or probe names.
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code.value,
            "details": self.details,
        }


class ConfigError(StackupError):
    """Malformed plan. Fatal: raised before any service is touched."""

    code = ErrorCode.CONFIG_ERROR


class CyclicDependencyError(ConfigError):
    """The dependency graph among units contains a cycle."""

    code = ErrorCode.CYCLIC_DEPENDENCY

    def __init__(self, unit_ids: list[str]):
        self.unit_ids = unit_ids
        super().__init__(
            f"Cycle detected involving units: {', '.join(unit_ids)}",
            {"units": unit_ids},
        )


class UnknownDependencyError(ConfigError):
    """A unit depends on an id that is not part of the plan."""

    code = ErrorCode.UNKNOWN_DEPENDENCY

    def __init__(self, unit_id: str, dependency: str):
        self.unit_id = unit_id
        self.dependency = dependency
        super().__init__(
            f"Unit '{unit_id}' depends on unknown unit '{dependency}'",
            {"unit": unit_id, "dependency": dependency},
        )


class PlanFileError(ConfigError):
    """The plan definition file could not be read or parsed."""

    code = ErrorCode.PLAN_FILE_INVALID


class StartActionError(StackupError):
    """A unit's start (or stop) action reported failure."""

    code = ErrorCode.START_ACTION_FAILED


class ProbeError(StackupError):
    """A probe exhausted its attempts."""


class ProbeTimeoutError(ProbeError):
    """The last attempt got no response within the timeout."""

    code = ErrorCode.PROBE_TIMEOUT


class ProbeConnectionError(ProbeError):
    """The last attempt was refused, or answered with an unexpected response."""

    code = ErrorCode.PROBE_CONNECTION


class CancellationError(StackupError):
    """The run deadline passed or the run was cancelled externally."""

    code = ErrorCode.CANCELLED


def truncate_error(error: str, max_length: int = MAX_ERROR_LENGTH) -> str:
    """Truncate error message if too long.

    Args:
        error: The error message.
        max_length: Maximum allowed length.

    Returns:
        Truncated error message.
    """
    if len(error) <= max_length:
        return error

    return error[: max_length - 3] + "..."


def describe_exception(exc: BaseException) -> str:
    """Render an exception as ``Type: message`` for result details."""
    message = str(exc)
    if not message:
        return type(exc).__name__
    return truncate_error(f"{type(exc).__name__}: {message}")


def classify_exception(exc: BaseException) -> ErrorCode:
    """Classify an exception to an error code.

    Args:
        exc: The exception to classify.

    Returns:
        Appropriate error code.
    """
    if isinstance(exc, StackupError):
        return exc.code

    if isinstance(exc, asyncio.CancelledError):
        return ErrorCode.CANCELLED

    # Timeout errors
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorCode.PROBE_TIMEOUT

    # Connection errors
    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return ErrorCode.PROBE_CONNECTION

    return ErrorCode.INTERNAL_ERROR


def log_error(
    exc: BaseException,
    code: ErrorCode | None = None,
    **context: Any,
) -> None:
    """Log an error with context.

    Internal errors are logged with their traceback, everything else as a
    one-line error.

    Args:
        exc: The exception that occurred.
        code: Optional pre-classified error code.
        **context: Additional context to include in log.
    """
    if code is None:
        code = classify_exception(exc)

    log_extra = {
        "error_code": code.value,
        "error_type": type(exc).__name__,
        **context,
    }

    if code == ErrorCode.INTERNAL_ERROR:
        logger.error("Internal error occurred", exc_info=exc, extra=log_extra)
    else:
        logger.error(f"{code.value}: {exc}", extra=log_extra)
