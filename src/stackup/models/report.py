"""Consolidated run report."""

from datetime import datetime

from pydantic import BaseModel, Field

from stackup.models.check import CheckResult
from stackup.models.unit import UnitResult


class ReportSummary(BaseModel):
    """Pass/fail/warn counts over units and checks."""

    pass_count: int = 0
    fail_count: int = 0
    warn_count: int = 0

    @property
    def total_count(self) -> int:
        return self.pass_count + self.fail_count + self.warn_count


class Report(BaseModel):
    """Outcome of one orchestrator invocation."""

    timestamp: datetime
    policy: str | None = None
    unit_results: list[UnitResult] = Field(default_factory=list)
    check_results: list[CheckResult] = Field(default_factory=list)
    skipped_units: list[str] = Field(default_factory=list)
    cancelled: bool = False
    summary: ReportSummary = Field(default_factory=ReportSummary)

    @property
    def ready(self) -> bool:
        return self.summary.fail_count == 0 and not self.cancelled
