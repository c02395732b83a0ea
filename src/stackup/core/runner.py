"""One complete run: bring up the plan, verify it, and persist the report."""

import asyncio
import logging
from contextlib import nullcontext

import httpx

from stackup.config import Settings
from stackup.core.loader import LoadedPlan
from stackup.core.orchestrator import FailurePolicy, Orchestrator
from stackup.core.report import ReportAggregator
from stackup.models.report import Report

logger = logging.getLogger(__name__)


async def run_plan(
    loaded: LoadedPlan,
    settings: Settings,
    policy: FailurePolicy | str | None = None,
    deadline_seconds: float | None = None,
    cancel_event: asyncio.Event | None = None,
    client: httpx.AsyncClient | None = None,
    persist: bool = True,
) -> Report:
    """Execute the plan, run the checks and persist the merged report.

    Explicit arguments win over the plan file, which wins over settings.
    Checks are not run when the run was cancelled. The report is produced
    (and persisted) for every outcome except a ConfigError raised earlier.
    """
    policy = FailurePolicy(policy or loaded.policy or settings.orchestrator.policy)
    if deadline_seconds is None:
        deadline_seconds = loaded.deadline_seconds or settings.orchestrator.deadline_seconds

    async with httpx.AsyncClient() if client is None else nullcontext(client) as http_client:
        orchestrator = Orchestrator(
            policy=policy,
            deadline_seconds=deadline_seconds,
            probe_concurrency=settings.orchestrator.probe_concurrency,
            client=http_client,
            cancel_event=cancel_event,
        )
        outcome = await orchestrator.run(loaded.plan)

        check_results = []
        if outcome.cancelled:
            logger.warning("Run cancelled; skipping verification checks")
        else:
            loaded.checks.use_client(http_client)
            loaded.checks.bind(outcome.unit_results)
            check_results = await loaded.checks.run_all()

    aggregator = ReportAggregator(
        settings.report.status_file, settings.report.resolved_json_file
    )
    report = aggregator.aggregate(
        outcome.unit_results,
        check_results,
        policy=policy.value,
        skipped_units=outcome.skipped,
        cancelled=outcome.cancelled,
    )
    if persist:
        aggregator.persist(report)

    logger.info(
        f"Run complete: pass={report.summary.pass_count} fail={report.summary.fail_count} "
        f"warn={report.summary.warn_count} ready={str(report.ready).lower()}",
        extra={"ready": report.ready},
    )
    return report

