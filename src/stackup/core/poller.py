"""Bounded retry-with-delay polling of readiness probes."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from stackup.core.probe import check_endpoint
from stackup.models.attempt import AttemptRecord, OutcomeKind, ProbeOutcome
from stackup.models.endpoint import BackoffMode, HealthProbe
from stackup.utils.errors import (
    CancellationError,
    ProbeConnectionError,
    ProbeError,
    ProbeTimeoutError,
    describe_exception,
)

logger = logging.getLogger(__name__)

# Cap for exponential backoff when a probe sets none
DEFAULT_MAX_DELAY_MS = 60000

ProbeOperation = Callable[[], Awaitable[ProbeOutcome]]


@dataclass
class PollResult:
    """What polling one probe produced.

    Attributes:
        probe_name: Name of the polled probe.
        ready: True if some attempt succeeded.
        attempts: Audit trail, ordered by attempt number.
        error: Failure cause when not ready.
    """

    probe_name: str
    ready: bool = False
    attempts: list[AttemptRecord] = field(default_factory=list)
    error: ProbeError | CancellationError | None = None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationError)


def calculate_backoff_delay(
    attempt: int,
    interval_ms: int,
    backoff: BackoffMode = BackoffMode.CONSTANT,
    max_interval_ms: int | None = None,
) -> float:
    """Calculate the delay in seconds after a failed attempt.

    Args:
        attempt: The attempt that just failed (0-indexed).
        interval_ms: Base interval in milliseconds.
        backoff: Constant or exponential growth.
        max_interval_ms: Cap applied to exponential delays.

    Returns:
        Delay in seconds before the next attempt.
    """
    if backoff == BackoffMode.CONSTANT:
        return interval_ms / 1000

    # Exponential backoff: interval * 2^attempt, capped
    cap = max_interval_ms if max_interval_ms is not None else DEFAULT_MAX_DELAY_MS
    delay_ms = min(interval_ms * (2**attempt), max(cap, interval_ms))
    return delay_ms / 1000


async def _sleep_or_cancel(delay: float, cancel_event: asyncio.Event | None) -> bool:
    """Sleep for ``delay`` seconds. Returns True if cancelled meanwhile."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


def _failure_for(probe_name: str, last: AttemptRecord) -> ProbeError:
    message = (
        f"Probe '{probe_name}' not ready after {last.attempt_number} attempt(s): "
        f"{last.detail or last.outcome.value}"
    )
    details = {"probe": probe_name, "attempts": last.attempt_number}
    if last.outcome == OutcomeKind.TIMEOUT:
        return ProbeTimeoutError(message, details)
    return ProbeConnectionError(message, details)


class RetryPoller:
    """Polls a probe until it succeeds, runs out of attempts, or is cancelled.

    The poller observes ``cancel_event`` before every attempt and during every
    inter-attempt sleep, so a cancelled poll returns within one interval.
    """

    def __init__(
        self,
        cancel_event: asyncio.Event | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.cancel_event = cancel_event
        self.client = client

    def _is_cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def poll(
        self,
        name: str,
        operation: ProbeOperation,
        max_attempts: int,
        interval_ms: int,
        backoff: BackoffMode = BackoffMode.CONSTANT,
        max_interval_ms: int | None = None,
        first_attempt: int = 1,
    ) -> PollResult:
        """Poll any async operation returning a ProbeOutcome.

        Args:
            name: Label recorded in every attempt.
            operation: Performs exactly one attempt.
            max_attempts: Attempt budget, at least 1.
            interval_ms: Delay between attempts.
            backoff: Delay strategy.
            max_interval_ms: Cap for exponential delays.
            first_attempt: Number given to the first attempt of this poll.

        Returns:
            PollResult with the full attempt trail.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        result = PollResult(probe_name=name)

        for attempt in range(max_attempts):
            if self._is_cancelled():
                result.error = CancellationError(
                    f"Polling of '{name}' cancelled", {"probe": name}
                )
                return result

            try:
                outcome = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error while probing '{name}'")
                outcome = ProbeOutcome(kind=OutcomeKind.ERROR, detail=describe_exception(e))

            record = AttemptRecord(
                probe_name=name,
                attempt_number=first_attempt + attempt,
                outcome=outcome.kind,
                latency_ms=outcome.latency_ms,
                detail=outcome.detail,
            )
            result.attempts.append(record)

            if outcome.ok:
                result.ready = True
                logger.info(
                    f"Probe '{name}' ready on attempt {attempt + 1}/{max_attempts}",
                    extra={"probe": name, "attempt": attempt + 1, "outcome": outcome.kind.value},
                )
                return result

            if attempt < max_attempts - 1:
                delay = calculate_backoff_delay(attempt, interval_ms, backoff, max_interval_ms)
                logger.warning(
                    f"Probe '{name}' attempt {attempt + 1}/{max_attempts} "
                    f"{outcome.kind.value}: {outcome.detail}. Retrying in {delay:.1f}s...",
                    extra={"probe": name, "attempt": attempt + 1, "outcome": outcome.kind.value},
                )
                if await _sleep_or_cancel(delay, self.cancel_event):
                    result.error = CancellationError(
                        f"Polling of '{name}' cancelled after {attempt + 1} attempt(s)",
                        {"probe": name, "attempts": attempt + 1},
                    )
                    return result
            else:
                logger.error(
                    f"Probe '{name}' final attempt {attempt + 1}/{max_attempts} "
                    f"{outcome.kind.value}: {outcome.detail}",
                    extra={"probe": name, "attempt": attempt + 1, "outcome": outcome.kind.value},
                )

        result.error = _failure_for(name, result.attempts[-1])
        return result

    async def poll_until_ready(self, probe: HealthProbe, first_attempt: int = 1) -> PollResult:
        """Poll a health probe against its endpoint."""

        async def attempt() -> ProbeOutcome:
            return await check_endpoint(probe.endpoint, self.client)

        return await self.poll(
            probe.name,
            attempt,
            max_attempts=probe.max_attempts,
            interval_ms=probe.interval_ms,
            backoff=probe.backoff,
            max_interval_ms=probe.max_interval_ms,
            first_attempt=first_attempt,
        )
