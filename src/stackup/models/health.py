"""Status API view of the environment's health."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class EnvironmentHealth(BaseModel):
    """What the last persisted run says about the environment.

    ``status`` is healthy when the run was READY with no warnings, degraded
    when READY with warnings, unhealthy otherwise (not ready, stale, or never
    verified).
    """

    model_config = ConfigDict(use_enum_values=True)

    status: HealthStatus
    detail: str
    last_run: datetime | None = None
    fresh: bool = True
    units_ready: list[str] = Field(default_factory=list)
    units_failed: list[str] = Field(default_factory=list)
    fail_count: int = 0
    warn_count: int = 0


class HealthResponse(BaseModel):
    """Body of ``/health`` and ``/health/ready``."""

    model_config = ConfigDict(use_enum_values=True)

    status: HealthStatus
    version: str
    checked_at: datetime
    environment: EnvironmentHealth
