"""Health endpoints.

Readiness of the status API mirrors the readiness of the environment that
``stackup run`` brought up, as recorded in the persisted status file.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Response, status

from stackup import __version__
from stackup.api.deps import AggregatorDep, SettingsDep
from stackup.core.report import status_is_fresh
from stackup.models.health import EnvironmentHealth, HealthResponse, HealthStatus

router = APIRouter()


def _split(value: str) -> list[str]:
    return [item for item in value.split(",") if item]


def _count(entries: dict[str, str], key: str) -> int:
    try:
        return int(entries.get(key, "0") or 0)
    except ValueError:
        return 0


def _timestamp(entries: dict[str, str]) -> datetime | None:
    try:
        return datetime.fromisoformat(entries["TIMESTAMP"])
    except (KeyError, ValueError):
        return None


def check_environment(entries: dict[str, str], fresh: bool = True) -> EnvironmentHealth:
    """Derive environment health from parsed ``KEY=VALUE`` status entries.

    Args:
        entries: Entries of the status file; empty if no run was recorded.
        fresh: False if the status is older than the configured maximum age.
    """
    if not entries:
        return EnvironmentHealth(
            status=HealthStatus.UNHEALTHY, detail="No status recorded", fresh=False
        )

    facts = dict(
        last_run=_timestamp(entries),
        fresh=fresh,
        units_ready=_split(entries.get("UNITS_READY", "")),
        units_failed=_split(entries.get("UNITS_FAILED", "")),
        fail_count=_count(entries, "FAIL_COUNT"),
        warn_count=_count(entries, "WARN_COUNT"),
    )

    if entries.get("READY", "").lower() != "true":
        if entries.get("CANCELLED", "").lower() == "true":
            detail = "Last run was cancelled"
        else:
            detail = f"Environment not ready ({facts['fail_count']} failure(s))"
        return EnvironmentHealth(status=HealthStatus.UNHEALTHY, detail=detail, **facts)

    if not fresh:
        return EnvironmentHealth(
            status=HealthStatus.UNHEALTHY,
            detail=f"Status from {entries.get('TIMESTAMP', 'unknown time')} is stale",
            **facts,
        )

    if facts["warn_count"]:
        return EnvironmentHealth(
            status=HealthStatus.DEGRADED,
            detail=f"Ready with {facts['warn_count']} warning(s)",
            **facts,
        )
    return EnvironmentHealth(status=HealthStatus.HEALTHY, detail="Environment ready", **facts)


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: SettingsDep, aggregator: AggregatorDep, response: Response
) -> HealthResponse:
    """Environment health.

    - HTTP 200: the environment is ready, possibly with warnings
    - HTTP 503: not ready, stale, or never verified
    """
    entries = aggregator.load_status()
    environment = check_environment(
        entries, fresh=status_is_fresh(entries, settings.report.max_age_seconds)
    )
    if environment.status == HealthStatus.UNHEALTHY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=environment.status,
        version=__version__,
        checked_at=datetime.now(timezone.utc),
        environment=environment,
    )


@router.get("/health/live")
async def liveness_check() -> dict:
    """The process is up; says nothing about the environment."""
    return {"status": "alive"}


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(
    settings: SettingsDep, aggregator: AggregatorDep, response: Response
) -> HealthResponse:
    return await health_check(settings, aggregator, response)
