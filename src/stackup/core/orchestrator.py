"""Executes a dependency plan unit by unit.

Each unit moves through Pending -> Starting -> Probing -> Ready | Failed.
Units run strictly in plan order; the probes of one unit may run
concurrently. Failures are recorded in the unit's result and handled by the
plan-level failure policy, never raised to the caller.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

import httpx

from stackup.core.plan import DependencyPlan, ServiceUnit
from stackup.core.poller import PollResult, RetryPoller
from stackup.middleware.logging import unit_context
from stackup.models.unit import UnitResult, UnitState
from stackup.utils.errors import (
    CancellationError,
    StackupError,
    StartActionError,
    describe_exception,
    log_error,
)

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    """What happens when a unit fails."""

    ABORT = "abort"
    CONTINUE = "continue"
    RESTART_ONCE = "restart-once"


@dataclass
class OrchestrationResult:
    """Unit results in plan order plus the units never attempted."""

    unit_results: list[UnitResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def all_ready(self) -> bool:
        return not self.skipped and all(result.ready for result in self.unit_results)


class Orchestrator:
    """Drives service units through start and readiness polling.

    Args:
        policy: Failure policy applied to every failed unit.
        deadline_seconds: Overall run deadline; None means unbounded.
        probe_concurrency: Poll the probes of one unit concurrently.
        client: Optional shared HTTP client for probes.
        cancel_event: Optional externally owned cancellation signal.
    """

    def __init__(
        self,
        policy: FailurePolicy = FailurePolicy.ABORT,
        deadline_seconds: float | None = None,
        probe_concurrency: bool = True,
        client: httpx.AsyncClient | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.policy = FailurePolicy(policy)
        self.deadline_seconds = deadline_seconds
        self.probe_concurrency = probe_concurrency
        self.cancel_event = cancel_event or asyncio.Event()
        self.poller = RetryPoller(cancel_event=self.cancel_event, client=client)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation; in-flight polling stops at the next boundary."""
        if not self.cancel_event.is_set():
            logger.warning("Orchestration cancelled")
        self.cancel_event.set()

    async def run(self, plan: DependencyPlan) -> OrchestrationResult:
        """Run every unit of the plan in order.

        Returns:
            OrchestrationResult with exactly one UnitResult per attempted unit.
        """
        outcome = OrchestrationResult()
        deadline_handle = None
        if self.deadline_seconds is not None:
            loop = asyncio.get_running_loop()
            deadline_handle = loop.call_later(self.deadline_seconds, self._deadline_expired)

        start_time = time.perf_counter()
        logger.info(
            f"Starting plan with {len(plan)} unit(s), policy={self.policy.value}",
            extra={"units": plan.unit_ids, "policy": self.policy.value},
        )

        try:
            units = list(plan)
            for index, unit in enumerate(units):
                if self.cancelled:
                    outcome.cancelled = True
                    outcome.skipped = [u.id for u in units[index:]]
                    break

                with unit_context(unit.id):
                    result = await self._run_unit(unit)
                outcome.unit_results.append(result)

                if result.ready:
                    continue
                if result.error_code == CancellationError.code.value:
                    outcome.cancelled = True
                    outcome.skipped = [u.id for u in units[index + 1 :]]
                    break
                if self.policy == FailurePolicy.ABORT:
                    outcome.skipped = [u.id for u in units[index + 1 :]]
                    if outcome.skipped:
                        logger.error(
                            f"Aborting plan after '{unit.id}' failed; "
                            f"skipping {', '.join(outcome.skipped)}",
                            extra={"unit_id": unit.id},
                        )
                    break

                dependents = plan.dependents_of(unit.id)
                if dependents:
                    logger.warning(
                        f"Continuing after '{unit.id}' failed; dependents "
                        f"{', '.join(dependents)} will still be attempted",
                        extra={"unit_id": unit.id},
                    )
        finally:
            if deadline_handle is not None:
                deadline_handle.cancel()

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        ready = sum(1 for r in outcome.unit_results if r.ready)
        logger.info(
            f"Plan finished: {ready}/{len(plan)} unit(s) ready",
            extra={"duration_ms": duration_ms, "cancelled": outcome.cancelled},
        )
        return outcome

    def _deadline_expired(self) -> None:
        logger.error(f"Run deadline of {self.deadline_seconds}s exceeded")
        self.cancel()

    async def _run_unit(self, unit: ServiceUnit) -> UnitResult:
        result = UnitResult(unit_id=unit.id, display_name=unit.display_name)
        error = await self._start_and_probe(unit, result)

        if (
            error is not None
            and self.policy == FailurePolicy.RESTART_ONCE
            and not isinstance(error, CancellationError)
        ):
            logger.warning(
                f"Unit '{unit.id}' failed ({error.message}); restarting once",
                extra={"unit_id": unit.id},
            )
            await self._stop(unit)
            error = await self._start_and_probe(unit, result)

        if error is None:
            result.state = UnitState.READY
            result.ready = True
            logger.info(f"Unit '{unit.id}' is ready", extra={"unit_id": unit.id})
        else:
            result.state = UnitState.FAILED
            result.ready = False
            result.final_error = error.message
            result.error_code = error.code.value
            log_error(error, unit_id=unit.id)
        return result

    async def _start_and_probe(
        self, unit: ServiceUnit, result: UnitResult
    ) -> StackupError | None:
        """One round of Starting then Probing. Returns the failure, if any."""
        if self.cancelled:
            return CancellationError(f"Unit '{unit.id}' cancelled before start", {"unit": unit.id})

        result.state = UnitState.STARTING
        result.start_invocations += 1
        error = await self._start(unit)
        if error is not None:
            return error
        result.started = True

        result.state = UnitState.PROBING
        polls = await self._poll_probes(unit, result)
        for poll in polls:
            result.attempts.extend(poll.attempts)

        cancelled = next((p.error for p in polls if p.cancelled), None)
        if cancelled is not None:
            return cancelled
        return next((p.error for p in polls if not p.ready), None)

    async def _race_cancel(self, action, unit: ServiceUnit) -> asyncio.Future | None:
        """Await ``action()`` unless cancellation comes first.

        Returns the finished task, or None if the run was cancelled; the
        action is then cancelled and awaited.
        """
        action_task = asyncio.ensure_future(action())
        cancel_task = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({action_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()

        if action_task.done():
            return action_task
        action_task.cancel()
        try:
            await action_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Action of '{unit.id}' failed while cancelling: {e}")
        return None

    async def _start(self, unit: ServiceUnit) -> StackupError | None:
        """Run the start action, racing it against cancellation."""
        logger.info(f"Starting unit '{unit.id}'", extra={"unit_id": unit.id})
        start_task = await self._race_cancel(unit.start_action, unit)
        if start_task is None:
            return CancellationError(
                f"Unit '{unit.id}' cancelled during start", {"unit": unit.id}
            )

        exc = start_task.exception()
        if exc is None:
            return None
        if isinstance(exc, StartActionError):
            return exc
        return StartActionError(
            f"Start action of '{unit.id}' failed: {describe_exception(exc)}",
            {"unit": unit.id},
        )

    async def _stop(self, unit: ServiceUnit) -> None:
        """Run the stop action before a restart; failures are only logged."""
        if unit.stop_action is None:
            return
        logger.info(f"Stopping unit '{unit.id}'", extra={"unit_id": unit.id})
        stop_task = await self._race_cancel(unit.stop_action, unit)
        if stop_task is None:
            logger.warning(f"Unit '{unit.id}' cancelled during stop", extra={"unit_id": unit.id})
            return

        exc = stop_task.exception()
        if exc is not None:
            # A failed stop does not prevent the restart attempt
            logger.warning(
                f"Stop action of '{unit.id}' failed: {describe_exception(exc)}",
                extra={"unit_id": unit.id},
            )

    async def _poll_probes(self, unit: ServiceUnit, result: UnitResult) -> list[PollResult]:
        """Poll every probe of the unit. Results keep probe order."""
        previous = Counter(record.probe_name for record in result.attempts)

        def poll(probe):
            return self.poller.poll_until_ready(
                probe, first_attempt=previous[probe.name] + 1
            )

        if self.probe_concurrency:
            return list(await asyncio.gather(*(poll(probe) for probe in unit.probes)))

        polls = []
        for probe in unit.probes:
            poll_result = await poll(probe)
            polls.append(poll_result)
            if not poll_result.ready:
                break
        return polls
