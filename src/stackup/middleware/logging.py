"""Structured logging for runs and the status API.

Two context variables tag every record emitted while they are set: the unit
currently being brought up and the status API request being served. Tasks
spawned by the orchestrator copy the context, so probe and poller logs carry
the unit without passing it around.
"""

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import IO, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
unit_id_var: ContextVar[str | None] = ContextVar("unit_id", default=None)

# Extra fields copied from log records into JSON output
STRUCTURED_FIELDS = (
    "probe",
    "attempt",
    "outcome",
    "check",
    "policy",
    "ready",
    "cancelled",
    "path",
    "duration_ms",
    "error_code",
    "error_type",
    "method",
    "status_code",
)

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


@contextmanager
def unit_context(unit_id: str) -> Iterator[None]:
    """Tag records logged inside the block with ``unit_id``."""
    token = unit_id_var.set(unit_id)
    try:
        yield
    finally:
        unit_id_var.reset(token)


def _record_unit(record: logging.LogRecord) -> str | None:
    return getattr(record, "unit_id", None) or unit_id_var.get()


def _record_request(record: logging.LogRecord) -> str | None:
    return getattr(record, "request_id", None) or request_id_var.get()


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        unit_id = _record_unit(record)
        if unit_id:
            entry["unit_id"] = unit_id
        request_id = _record_request(record)
        if request_id:
            entry["request_id"] = request_id

        entry.update(
            (key, getattr(record, key))
            for key in STRUCTURED_FIELDS
            if getattr(record, key, None) is not None
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human readable lines, prefixed with the unit or request they concern."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        prefix = _record_unit(record) or (_record_request(record) or "")[:8]
        line = super().format(record)
        return f"[{prefix}] {line}" if prefix else line


def configure_logging(
    level: str = "INFO",
    format: str = "text",
    stream: IO[str] | None = None,
) -> None:
    """Install a single root handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: ``json`` or ``text``.
        stream: Destination; stderr by default so stdout stays free for results.
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JsonFormatter() if format == "json" else TextFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log for the status API, one record per request."""

    def __init__(self, app, logger: logging.Logger | None = None):
        super().__init__(app)
        self.logger = logger or logging.getLogger("stackup.access")

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = getattr(request.state, "request_id", None)
        token = request_id_var.set(request_id)
        fields = {"request_id": request_id, "method": request.method, "path": request.url.path}
        started = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.exception(
                "Request failed",
                extra={**fields, "duration_ms": elapsed_ms(), "error_type": type(e).__name__},
            )
            raise
        finally:
            request_id_var.reset(token)

        self.logger.info(
            "Request completed",
            extra={**fields, "status_code": response.status_code, "duration_ms": elapsed_ms()},
        )
        return response
