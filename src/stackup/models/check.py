"""Verification check results."""

from enum import Enum

from pydantic import BaseModel


class CheckStatus(str, Enum):
    """Verdict of a verification check."""

    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"


class CheckCategory(str, Enum):
    """What a check verifies."""

    REACHABILITY = "reachability"
    PREREQUISITE = "prerequisite"
    CONNECTIVITY = "connectivity"


class CheckResult(BaseModel):
    """Result of a single verification check."""

    check_name: str
    status: CheckStatus
    category: CheckCategory | None = None
    detail: str | None = None
    duration_ms: int = 0
