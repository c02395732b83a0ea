"""Tests for the end-to-end run pipeline."""

import asyncio

import httpx
import pytest

from stackup.config import ReportSettings, Settings
from stackup.core.checks import CheckSuite, ConnectivityCheck, HttpCheck
from stackup.core.loader import LoadedPlan
from stackup.core.plan import DependencyPlan, ServiceUnit
from stackup.core.report import read_status_file
from stackup.core.runner import run_plan
from stackup.models.check import CheckStatus
from stackup.models.endpoint import Endpoint, HealthProbe


@pytest.fixture
def settings(tmp_path):
    return Settings(report=ReportSettings(status_file=tmp_path / "status.env"))


def client_for(statuses: dict[str, int]) -> httpx.AsyncClient:
    """Client answering each host with a fixed status (404 for unknown hosts)."""
    transport = httpx.MockTransport(
        lambda request: httpx.Response(statuses.get(request.url.host, 404))
    )
    return httpx.AsyncClient(transport=transport)


def loaded_plan(policy: str | None = None) -> LoadedPlan:
    def probe(host):
        return HealthProbe(
            name=host, endpoint=Endpoint(target=f"http://{host}/"), interval_ms=0, max_attempts=2
        )

    plan = DependencyPlan.build(
        [
            ServiceUnit(id="db", start_action=lambda: None, probes=[probe("db")]),
            ServiceUnit(
                id="app",
                start_action=lambda: None,
                probes=[probe("app")],
                depends_on=frozenset({"db"}),
            ),
        ]
    )
    checks = CheckSuite(
        [
            HttpCheck("App UI", Endpoint(target="http://app/ui")),
            HttpCheck("Docs", Endpoint(target="http://docs/"), on_failure=CheckStatus.WARN),
            ConnectivityCheck("App to DB", Endpoint(target="http://db/"), requires=["app", "db"]),
        ]
    )
    return LoadedPlan(plan=plan, checks=checks, policy=policy)


class TestRunPlan:
    """Tests for run_plan function."""

    @pytest.mark.asyncio
    async def test_ready_run_persists_status(self, settings):
        """Test a successful run writes READY=true and both report files."""
        async with client_for({"db": 200, "app": 200}) as client:
            report = await run_plan(loaded_plan(), settings, client=client)

        assert report.ready is True
        assert report.summary.pass_count == 4
        assert report.summary.warn_count == 1
        assert [c.status for c in report.check_results] == [
            CheckStatus.PASS,
            CheckStatus.WARN,
            CheckStatus.PASS,
        ]

        entries = read_status_file(settings.report.status_file)
        assert entries["READY"] == "true"
        assert entries["POLICY"] == "abort"
        assert settings.report.resolved_json_file.exists()

    @pytest.mark.asyncio
    async def test_failed_unit_fails_dependent_checks(self, settings):
        """Test abort skips later units and connectivity checks report not ready."""
        async with client_for({"db": 503, "app": 200}) as client:
            report = await run_plan(loaded_plan(), settings, client=client)

        assert report.ready is False
        assert report.skipped_units == ["app"]
        connectivity = report.check_results[2]
        assert connectivity.status == CheckStatus.FAIL
        assert "not ready" in connectivity.detail
        assert read_status_file(settings.report.status_file)["READY"] == "false"

    @pytest.mark.asyncio
    async def test_explicit_policy_wins(self, settings):
        """Test an explicit policy overrides the plan file and settings."""
        async with client_for({"db": 503, "app": 200}) as client:
            report = await run_plan(
                loaded_plan(policy="abort"), settings, policy="continue", client=client
            )

        assert report.policy == "continue"
        assert [u.unit_id for u in report.unit_results] == ["db", "app"]

    @pytest.mark.asyncio
    async def test_plan_policy_over_settings(self, settings):
        """Test the plan file's policy is used when none is given."""
        async with client_for({"db": 200, "app": 200}) as client:
            report = await run_plan(loaded_plan(policy="restart-once"), settings, client=client)

        assert report.policy == "restart-once"

    @pytest.mark.asyncio
    async def test_cancelled_run_skips_checks(self, settings):
        """Test checks are not run after cancellation but the report is persisted."""
        cancel = asyncio.Event()
        cancel.set()

        async with client_for({"db": 200, "app": 200}) as client:
            report = await run_plan(loaded_plan(), settings, cancel_event=cancel, client=client)

        assert report.cancelled is True
        assert report.check_results == []
        assert report.skipped_units == ["db", "app"]
        entries = read_status_file(settings.report.status_file)
        assert entries["READY"] == "false"
        assert entries["CANCELLED"] == "true"

    @pytest.mark.asyncio
    async def test_persist_disabled(self, settings):
        """Test persist=False leaves no files behind."""
        async with client_for({"db": 200, "app": 200}) as client:
            await run_plan(loaded_plan(), settings, client=client, persist=False)

        assert not settings.report.status_file.exists()

    @pytest.mark.asyncio
    async def test_failed_start_counts_once_under_abort(self, settings):
        """Test a failed start action is one failure and its dependent is skipped."""

        def start_db():
            return False

        plan = DependencyPlan.build(
            [
                ServiceUnit(id="db", start_action=start_db),
                ServiceUnit(id="app", start_action=lambda: None, depends_on=frozenset({"db"})),
            ]
        )
        loaded = LoadedPlan(plan=plan, checks=CheckSuite([]), policy="abort")

        async with client_for({}) as client:
            report = await run_plan(loaded, settings, client=client)

        assert report.ready is False
        assert report.skipped_units == ["app"]
        entries = read_status_file(settings.report.status_file)
        assert entries["FAIL_COUNT"] == "1"
        assert entries["PASS_COUNT"] == "0"
        assert entries["READY"] == "false"
        assert entries["UNITS_FAILED"] == "db"
        assert entries["UNITS_SKIPPED"] == "app"
