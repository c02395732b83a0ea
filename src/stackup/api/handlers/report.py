"""Report endpoint handlers."""

import logging

from fastapi import APIRouter, HTTPException

from stackup.api.deps import AggregatorDep
from stackup.models.report import Report

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/report", response_model=Report)
async def get_report(aggregator: AggregatorDep) -> Report:
    """Return the full report of the last run."""
    report = aggregator.load_report()
    if report is None:
        raise HTTPException(status_code=404, detail="No report recorded yet")
    return report


@router.get("/status")
async def get_status(aggregator: AggregatorDep) -> dict[str, str]:
    """Return the flat status entries of the last run."""
    entries = aggregator.load_status()
    if not entries:
        raise HTTPException(status_code=404, detail="No status recorded yet")
    logger.debug(f"Returning {len(entries)} status entries")
    return entries
