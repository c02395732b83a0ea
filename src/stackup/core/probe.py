"""Single-attempt readiness checks against HTTP and TCP endpoints.

A check never retries; repeated attempts are the poller's job.
"""

import asyncio
import json
import logging
import time
from typing import Any

import httpx

from stackup.models.attempt import OutcomeKind, ProbeOutcome
from stackup.models.endpoint import Endpoint, EndpointKind, split_host_port
from stackup.utils.errors import describe_exception

logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_json_path(document: Any, path: str) -> Any:
    """Look up a dotted path such as ``$.overall.level`` in a JSON document.

    Numeric segments index into lists.

    Raises:
        KeyError: If a segment is missing, so that a JSON null stays a value.
    """
    path = path.strip()
    if path.startswith("$"):
        path = path[1:]
    current = document
    for segment in filter(None, path.split(".")):
        if isinstance(current, dict):
            value = current.get(segment, _MISSING)
        elif isinstance(current, list) and segment.lstrip("-").isdigit():
            index = int(segment)
            value = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            value = _MISSING
        if value is _MISSING:
            raise KeyError(segment)
        current = value
    return current


def json_value_matches(actual: Any, expected: Any) -> bool:
    """Compare a JSON value against the expectation (a list means any-of)."""
    if isinstance(expected, (list, tuple, set, frozenset)):
        return actual in expected
    return actual == expected


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


async def check_http(
    endpoint: Endpoint, client: httpx.AsyncClient | None = None
) -> ProbeOutcome:
    """Issue one GET against an HTTP endpoint and classify the answer."""
    start_time = time.perf_counter()
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=endpoint.timeout_seconds) as own_client:
                response = await asyncio.wait_for(
                    own_client.get(endpoint.target), endpoint.timeout_seconds
                )
        else:
            response = await asyncio.wait_for(
                client.get(endpoint.target, timeout=endpoint.timeout_seconds),
                endpoint.timeout_seconds,
            )
    except (httpx.TimeoutException, asyncio.TimeoutError):
        return ProbeOutcome(
            kind=OutcomeKind.TIMEOUT,
            detail=f"No response from {endpoint.target} within {endpoint.timeout_ms}ms",
            latency_ms=_elapsed_ms(start_time),
        )
    except httpx.HTTPError as e:
        return ProbeOutcome(
            kind=OutcomeKind.ERROR,
            detail=f"Connection failed: {describe_exception(e)}",
            latency_ms=_elapsed_ms(start_time),
        )

    latency_ms = _elapsed_ms(start_time)
    status_code = response.status_code

    if status_code not in endpoint.expected_status:
        expected = ", ".join(str(code) for code in sorted(endpoint.expected_status))
        return ProbeOutcome(
            kind=OutcomeKind.ERROR,
            detail=f"Unexpected status code: {status_code} (expected {expected})",
            latency_ms=latency_ms,
            status_code=status_code,
        )

    if endpoint.json_path is None:
        return ProbeOutcome(
            kind=OutcomeKind.SUCCESS,
            detail=f"HTTP {status_code}",
            latency_ms=latency_ms,
            status_code=status_code,
        )

    try:
        actual = resolve_json_path(response.json(), endpoint.json_path)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return ProbeOutcome(
            kind=OutcomeKind.ERROR,
            detail="Malformed response: body is not JSON",
            latency_ms=latency_ms,
            status_code=status_code,
        )
    except KeyError:
        return ProbeOutcome(
            kind=OutcomeKind.ERROR,
            detail=f"Response has no value at {endpoint.json_path}",
            latency_ms=latency_ms,
            status_code=status_code,
        )

    if not json_value_matches(actual, endpoint.json_equals):
        return ProbeOutcome(
            kind=OutcomeKind.ERROR,
            detail=f"{endpoint.json_path} is {actual!r}, expected {endpoint.json_equals!r}",
            latency_ms=latency_ms,
            status_code=status_code,
        )

    return ProbeOutcome(
        kind=OutcomeKind.SUCCESS,
        detail=f"{endpoint.json_path} == {actual!r}",
        latency_ms=latency_ms,
        status_code=status_code,
    )


async def check_tcp(endpoint: Endpoint) -> ProbeOutcome:
    """Open (and immediately close) one TCP connection to ``host:port``."""
    host, port = split_host_port(endpoint.target)
    start_time = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), endpoint.timeout_seconds
        )
    except asyncio.TimeoutError:
        return ProbeOutcome(
            kind=OutcomeKind.TIMEOUT,
            detail=f"No connection to {endpoint.target} within {endpoint.timeout_ms}ms",
            latency_ms=_elapsed_ms(start_time),
        )
    except OSError as e:
        return ProbeOutcome(
            kind=OutcomeKind.ERROR,
            detail=f"Connection failed: {describe_exception(e)}",
            latency_ms=_elapsed_ms(start_time),
        )

    latency_ms = _elapsed_ms(start_time)
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        # The port answered; a reset on close does not change that.
        pass
    return ProbeOutcome(
        kind=OutcomeKind.SUCCESS,
        detail=f"Port {port} open on {host}",
        latency_ms=latency_ms,
    )


async def check_endpoint(
    endpoint: Endpoint, client: httpx.AsyncClient | None = None
) -> ProbeOutcome:
    """Perform exactly one readiness attempt against an endpoint.

    Args:
        endpoint: What to contact and what counts as healthy.
        client: Optional shared HTTP client (ignored for TCP endpoints).

    Returns:
        ProbeOutcome classified as success, timeout or error.
    """
    if endpoint.kind == EndpointKind.TCP:
        outcome = await check_tcp(endpoint)
    else:
        outcome = await check_http(endpoint, client)

    logger.debug(
        f"Probe {endpoint.target}: {outcome.kind.value}",
        extra={"outcome": outcome.kind.value, "duration_ms": outcome.latency_ms},
    )
    return outcome
