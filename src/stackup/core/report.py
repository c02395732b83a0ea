"""Report aggregation, persistence and console summaries.

The persisted status file is a flat ``KEY=VALUE`` file that a shell can
``source`` and a later run can read to skip work on a verified environment::

    # stackup status - 2026-10-18T09:30:00+00:00
    TIMESTAMP=2026-10-18T09:30:00+00:00
    PASS_COUNT=7
    FAIL_COUNT=0
    WARN_COUNT=1
    READY=true
"""

import logging
import os
import shlex
import tempfile
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from stackup.models.check import CheckResult, CheckStatus
from stackup.models.report import Report, ReportSummary
from stackup.models.unit import UnitResult

logger = logging.getLogger(__name__)


def summarize(
    unit_results: Iterable[UnitResult], check_results: Iterable[CheckResult]
) -> ReportSummary:
    """Count passes, failures and warnings over units and checks."""
    summary = ReportSummary()
    for unit in unit_results:
        if unit.ready:
            summary.pass_count += 1
        else:
            summary.fail_count += 1
    for check in check_results:
        if check.status == CheckStatus.PASS:
            summary.pass_count += 1
        elif check.status == CheckStatus.FAIL:
            summary.fail_count += 1
        else:
            summary.warn_count += 1
    return summary


def aggregate(
    unit_results: Iterable[UnitResult],
    check_results: Iterable[CheckResult],
    timestamp: datetime | None = None,
    policy: str | None = None,
    skipped_units: Iterable[str] = (),
    cancelled: bool = False,
) -> Report:
    """Merge unit and check results into one report.

    Summary counts are a pure function of the inputs: ready units and PASS
    checks pass, failed units and FAIL checks fail, WARN checks warn.
    """
    unit_results = list(unit_results)
    check_results = list(check_results)
    return Report(
        timestamp=timestamp or datetime.now(timezone.utc),
        policy=policy,
        unit_results=unit_results,
        check_results=check_results,
        skipped_units=list(skipped_units),
        cancelled=cancelled,
        summary=summarize(unit_results, check_results),
    )


def status_entries(report: Report) -> dict[str, str]:
    """The flat key-value view of a report."""
    summary = report.summary
    return {
        "TIMESTAMP": report.timestamp.isoformat(),
        "PASS_COUNT": str(summary.pass_count),
        "FAIL_COUNT": str(summary.fail_count),
        "WARN_COUNT": str(summary.warn_count),
        "TOTAL_COUNT": str(summary.total_count),
        "READY": "true" if report.ready else "false",
        "POLICY": report.policy or "",
        "CANCELLED": "true" if report.cancelled else "false",
        "UNITS_READY": ",".join(u.unit_id for u in report.unit_results if u.ready),
        "UNITS_FAILED": ",".join(u.unit_id for u in report.unit_results if not u.ready),
        "UNITS_SKIPPED": ",".join(report.skipped_units),
    }


def _atomic_write(path: Path, content: str) -> None:
    """Replace ``path`` with ``content``; readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_status_file(report: Report, path: str | Path) -> Path:
    """Persist the report as a ``KEY=VALUE`` status file."""
    path = Path(path)
    lines = [f"# stackup status - {report.timestamp.isoformat()}"]
    lines.extend(f"{key}={shlex.quote(value)}" for key, value in status_entries(report).items())
    _atomic_write(path, "\n".join(lines) + "\n")
    logger.info(f"Status written to {path}", extra={"path": str(path)})
    return path


def write_report_json(report: Report, path: str | Path) -> Path:
    """Persist the full report as JSON."""
    path = Path(path)
    _atomic_write(path, report.model_dump_json(indent=2) + "\n")
    logger.info(f"Report written to {path}", extra={"path": str(path)})
    return path


def read_report_json(path: str | Path) -> Report | None:
    """Load a JSON report, or None if there is none."""
    path = Path(path)
    if not path.exists():
        return None
    return Report.model_validate_json(path.read_text(encoding="utf-8"))


def read_status_file(path: str | Path) -> dict[str, str]:
    """Parse a ``KEY=VALUE`` status file. Missing file yields an empty dict."""
    path = Path(path)
    if not path.exists():
        return {}

    entries: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw]
        entries[key.strip()] = parts[0] if parts else ""
    return entries


def is_environment_ready(
    path: str | Path,
    max_age_seconds: float | None = None,
    now: datetime | None = None,
) -> bool:
    """True if a prior run recorded ``READY=true`` (and is recent enough)."""
    entries = read_status_file(path)
    if entries.get("READY", "").lower() != "true":
        return False
    return status_is_fresh(entries, max_age_seconds, now)


def status_is_fresh(
    entries: dict[str, str],
    max_age_seconds: float | None,
    now: datetime | None = None,
) -> bool:
    """True if the entries' TIMESTAMP is within ``max_age_seconds`` (None: always)."""
    if max_age_seconds is None:
        return True
    try:
        recorded = datetime.fromisoformat(entries["TIMESTAMP"])
    except (KeyError, ValueError):
        return False
    if recorded.tzinfo is None:
        recorded = recorded.replace(tzinfo=timezone.utc)
    age = ((now or datetime.now(timezone.utc)) - recorded).total_seconds()
    return age <= max_age_seconds


def format_summary(report: Report) -> str:
    """Human-readable summary: counts plus the first error per failure."""
    summary = report.summary
    lines = [
        f"Passed: {summary.pass_count}  Failed: {summary.fail_count}  "
        f"Warnings: {summary.warn_count}",
        f"READY={'true' if report.ready else 'false'}",
    ]

    failed_units = [u for u in report.unit_results if not u.ready]
    failed_checks = [c for c in report.check_results if c.status == CheckStatus.FAIL]
    warned_checks = [c for c in report.check_results if c.status == CheckStatus.WARN]

    if failed_units or failed_checks:
        lines.append("Failures:")
        for unit in failed_units:
            lines.append(f"  - {unit.display_name}: {unit.final_error or 'not ready'}")
        for check in failed_checks:
            lines.append(f"  - {check.check_name}: {check.detail or 'failed'}")
    if warned_checks:
        lines.append("Warnings:")
        for check in warned_checks:
            lines.append(f"  - {check.check_name}: {check.detail or 'warning'}")
    if report.skipped_units:
        lines.append(f"Skipped: {', '.join(report.skipped_units)}")
    if report.cancelled:
        lines.append("Run was cancelled before completion")
    return "\n".join(lines)


class ReportAggregator:
    """Builds reports and hands them off through the status files."""

    def __init__(self, status_file: str | Path, json_file: str | Path | None = None):
        self.status_file = Path(status_file)
        self.json_file = Path(json_file) if json_file else self.status_file.with_suffix(".json")

    def aggregate(self, unit_results, check_results, **kwargs) -> Report:
        return aggregate(unit_results, check_results, **kwargs)

    def persist(self, report: Report) -> None:
        # JSON first: once the status file says READY the details exist too
        write_report_json(report, self.json_file)
        write_status_file(report, self.status_file)

    def load_status(self) -> dict[str, str]:
        return read_status_file(self.status_file)

    def load_report(self) -> Report | None:
        return read_report_json(self.json_file)
