"""Per-unit orchestration results."""

from enum import Enum

from pydantic import BaseModel, Field

from stackup.models.attempt import AttemptRecord


class UnitState(str, Enum):
    """Lifecycle of a service unit within one run."""

    PENDING = "pending"
    STARTING = "starting"
    PROBING = "probing"
    READY = "ready"
    FAILED = "failed"


class UnitResult(BaseModel):
    """Outcome of one service unit in one orchestrator run."""

    unit_id: str
    display_name: str
    started: bool = False
    ready: bool = False
    state: UnitState = UnitState.PENDING
    attempts: list[AttemptRecord] = Field(default_factory=list)
    start_invocations: int = 0
    final_error: str | None = None
    error_code: str | None = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)
