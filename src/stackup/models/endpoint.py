"""Endpoint and health probe definitions."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EndpointKind(str, Enum):
    """How an endpoint is checked."""

    HTTP = "http"
    TCP = "tcp"


class BackoffMode(str, Enum):
    """Delay strategy between probe attempts."""

    CONSTANT = "constant"
    EXPONENTIAL = "exponential"


DEFAULT_TIMEOUT_MS = 5000
DEFAULT_INTERVAL_MS = 10000
DEFAULT_MAX_ATTEMPTS = 10


def split_host_port(target: str) -> tuple[str, int]:
    """Split a ``host:port`` target.

    Raises:
        ValueError: If the target has no port or the port is out of range.
    """
    host, sep, port_str = target.rpartition(":")
    if not sep or not host:
        raise ValueError(f"TCP target must be host:port, got {target!r}")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"TCP target has a non-numeric port: {target!r}") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"TCP port out of range in {target!r}")
    return host.strip("[]"), port


class Endpoint(BaseModel):
    """A network endpoint and what counts as a healthy answer from it.

    HTTP endpoints accept any status in ``expected_status``. When ``json_path``
    is set the body must also be JSON whose value at that path equals
    ``json_equals`` (or is one of its items when it is a list).
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    kind: EndpointKind = EndpointKind.HTTP
    target: str
    expected_status: frozenset[int] = frozenset({200})
    json_path: str | None = None
    json_equals: Any = None
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)

    @model_validator(mode="after")
    def check_target(self) -> "Endpoint":
        """Validate the target against the endpoint kind."""
        if self.kind == EndpointKind.TCP:
            split_host_port(self.target)
            if self.json_path is not None:
                raise ValueError("json_path is only valid for HTTP endpoints")
        elif not self.target.startswith(("http://", "https://")):
            raise ValueError(f"HTTP target must be an http(s) URL, got {self.target!r}")
        if not self.expected_status and self.kind == EndpointKind.HTTP:
            raise ValueError("expected_status must not be empty")
        return self

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class HealthProbe(BaseModel):
    """A named readiness test with its polling budget."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    endpoint: Endpoint
    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, ge=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    backoff: BackoffMode = BackoffMode.CONSTANT
    max_interval_ms: int | None = Field(default=None, ge=0)
