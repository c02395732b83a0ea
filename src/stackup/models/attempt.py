"""Probe outcomes and the per-attempt audit trail."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class OutcomeKind(str, Enum):
    """Classification of a single probe attempt."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"
    CANCELLED = "cancelled"


class ProbeOutcome(BaseModel):
    """Result of exactly one probe attempt."""

    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    detail: str | None = None
    latency_ms: int = 0
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


class AttemptRecord(BaseModel):
    """One entry of the polling audit trail. Never rewritten."""

    model_config = ConfigDict(frozen=True)

    probe_name: str
    attempt_number: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: OutcomeKind
    latency_ms: int = 0
    detail: str | None = None
