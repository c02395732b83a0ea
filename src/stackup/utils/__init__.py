"""Utility functions for error handling."""

from stackup.utils.errors import (
    CancellationError,
    ConfigError,
    CyclicDependencyError,
    ErrorCode,
    PlanFileError,
    ProbeConnectionError,
    ProbeTimeoutError,
    StackupError,
    StartActionError,
    UnknownDependencyError,
)

__all__ = [
    "CancellationError",
    "ConfigError",
    "CyclicDependencyError",
    "ErrorCode",
    "PlanFileError",
    "ProbeConnectionError",
    "ProbeTimeoutError",
    "StackupError",
    "StartActionError",
    "UnknownDependencyError",
]
