"""Independent verification checks run after the plan completes.

Three kinds of checks are supported: reachability of a service, presence of a
prerequisite tool or file, and connectivity from one service to another. Every
check is isolated: an exception inside one check becomes a single FAIL result.
"""

import asyncio
import logging
import shutil
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from pathlib import Path

import httpx

from stackup.core.probe import check_endpoint
from stackup.models.check import CheckCategory, CheckResult, CheckStatus
from stackup.models.endpoint import Endpoint
from stackup.models.unit import UnitResult
from stackup.utils.errors import describe_exception

logger = logging.getLogger(__name__)

# Seconds allowed for a tool's version command
VERSION_COMMAND_TIMEOUT = 10.0


class Check(ABC):
    """Base class for verification checks.

    Attributes:
        name: Label shown in the report.
        category: What the check verifies.
        on_failure: Status reported when the check does not pass (FAIL or WARN).
    """

    category: CheckCategory = CheckCategory.REACHABILITY

    def __init__(self, name: str, on_failure: CheckStatus = CheckStatus.FAIL):
        if on_failure == CheckStatus.PASS:
            raise ValueError("on_failure must be FAIL or WARN")
        self.name = name
        self.on_failure = CheckStatus(on_failure)

    @abstractmethod
    async def run(self) -> CheckResult:
        """Execute the check once."""

    def passed(self, detail: str | None = None) -> CheckResult:
        return CheckResult(
            check_name=self.name, status=CheckStatus.PASS, category=self.category, detail=detail
        )

    def failed(self, detail: str | None = None) -> CheckResult:
        return CheckResult(
            check_name=self.name, status=self.on_failure, category=self.category, detail=detail
        )


class HttpCheck(Check):
    """A service answers on its endpoint with an accepted response."""

    category = CheckCategory.REACHABILITY

    def __init__(
        self,
        name: str,
        endpoint: Endpoint,
        on_failure: CheckStatus = CheckStatus.FAIL,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(name, on_failure)
        self.endpoint = endpoint
        self.client = client

    async def run(self) -> CheckResult:
        outcome = await check_endpoint(self.endpoint, self.client)
        if outcome.ok:
            return self.passed(f"{self.endpoint.target} is up ({outcome.detail})")
        return self.failed(f"{self.endpoint.target}: {outcome.detail}")


class ToolCheck(Check):
    """An executable is available on PATH, optionally reporting its version."""

    category = CheckCategory.PREREQUISITE

    def __init__(
        self,
        name: str,
        executable: str,
        version_args: Sequence[str] | None = None,
        on_failure: CheckStatus = CheckStatus.FAIL,
    ):
        super().__init__(name, on_failure)
        self.executable = executable
        self.version_args = list(version_args) if version_args else None

    async def run(self) -> CheckResult:
        path = shutil.which(self.executable)
        if path is None:
            return self.failed(f"{self.executable} is not installed")
        if not self.version_args:
            return self.passed(f"{self.executable} found at {path}")

        proc = await asyncio.create_subprocess_exec(
            path,
            *self.version_args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), VERSION_COMMAND_TIMEOUT)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return self.failed(f"{self.executable} did not report its version")
        version = stdout.decode(errors="replace").strip().splitlines()
        if proc.returncode != 0:
            return self.failed(f"{self.executable} exited with status {proc.returncode}")
        return self.passed(f"{self.executable} {version[0] if version else ''} is installed".strip())


class PathCheck(Check):
    """A file or directory exists."""

    category = CheckCategory.PREREQUISITE

    def __init__(
        self,
        name: str,
        path: str | Path,
        kind: str = "any",
        on_failure: CheckStatus = CheckStatus.FAIL,
    ):
        super().__init__(name, on_failure)
        if kind not in ("any", "file", "directory"):
            raise ValueError(f"Unknown path kind: {kind}")
        self.path = Path(path)
        self.kind = kind

    async def run(self) -> CheckResult:
        if self.kind == "file" and self.path.is_file():
            return self.passed(f"{self.path} found")
        if self.kind == "directory" and self.path.is_dir():
            return self.passed(f"{self.path} found")
        if self.kind == "any" and self.path.exists():
            return self.passed(f"{self.path} found")
        noun = "path" if self.kind == "any" else self.kind
        return self.failed(f"{noun} {self.path} not found")


class ConnectivityCheck(Check):
    """One service can reach another service's endpoint.

    Runs only against units that finished; if any of ``requires`` is not
    ready, the check reports its failure status without contacting the target.
    """

    category = CheckCategory.CONNECTIVITY

    def __init__(
        self,
        name: str,
        endpoint: Endpoint,
        requires: Iterable[str] = (),
        source: str | None = None,
        on_failure: CheckStatus = CheckStatus.FAIL,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(name, on_failure)
        self.endpoint = endpoint
        self.requires = list(requires)
        self.source = source
        self.client = client
        self.unit_results: dict[str, UnitResult] | None = None

    def bind(self, unit_results: Iterable[UnitResult]) -> None:
        """Attach the finished units this check depends on."""
        self.unit_results = {result.unit_id: result for result in unit_results}

    async def run(self) -> CheckResult:
        if self.requires:
            if self.unit_results is None:
                raise RuntimeError(f"Connectivity check '{self.name}' run before units finished")
            not_ready = [
                unit_id
                for unit_id in self.requires
                if unit_id not in self.unit_results or not self.unit_results[unit_id].ready
            ]
            if not_ready:
                return self.failed(f"Skipped: {', '.join(not_ready)} not ready")

        outcome = await check_endpoint(self.endpoint, self.client)
        origin = f"{self.source} -> " if self.source else ""
        if outcome.ok:
            return self.passed(f"{origin}{self.endpoint.target} reachable")
        return self.failed(f"{origin}{self.endpoint.target}: {outcome.detail}")


class CheckSuite:
    """A named collection of independent checks."""

    def __init__(self, checks: Iterable[Check] = (), name: str = "checks"):
        self.name = name
        self.checks = list(checks)

    def __len__(self) -> int:
        return len(self.checks)

    def use_client(self, client: httpx.AsyncClient) -> None:
        """Share one HTTP client among checks that have none of their own."""
        for check in self.checks:
            if isinstance(check, (HttpCheck, ConnectivityCheck)) and check.client is None:
                check.client = client

    def bind(self, unit_results: Iterable[UnitResult]) -> None:
        """Give connectivity checks the finished unit results."""
        unit_results = list(unit_results)
        for check in self.checks:
            if isinstance(check, ConnectivityCheck):
                check.bind(unit_results)

    async def _run_isolated(self, check: Check) -> CheckResult:
        start_time = time.perf_counter()
        try:
            result = await check.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Check '{check.name}' raised")
            result = CheckResult(
                check_name=check.name,
                status=CheckStatus.FAIL,
                category=check.category,
                detail=f"Check raised {describe_exception(e)}",
            )
        result.duration_ms = int((time.perf_counter() - start_time) * 1000)

        log = logger.info if result.status == CheckStatus.PASS else logger.warning
        log(
            f"{result.status.value} {check.name}: {result.detail}",
            extra={"check": check.name, "outcome": result.status.value},
        )
        return result

    async def run_all(self) -> list[CheckResult]:
        """Run every check concurrently. Results keep declaration order."""
        if not self.checks:
            return []
        results = await asyncio.gather(*(self._run_isolated(c) for c in self.checks))
        return list(results)
