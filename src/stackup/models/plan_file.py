"""Schema of the YAML plan definition file."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stackup.models.check import CheckStatus
from stackup.models.endpoint import BackoffMode


class ProbeDefaults(BaseModel):
    """Probe settings applied where a probe leaves them unset."""

    model_config = ConfigDict(extra="forbid")

    interval_ms: int | None = Field(default=None, ge=0)
    max_attempts: int | None = Field(default=None, ge=1)
    timeout_ms: int | None = Field(default=None, gt=0)
    backoff: BackoffMode | None = None
    max_interval_ms: int | None = Field(default=None, ge=0)


class ProbeSpec(ProbeDefaults):
    """One readiness probe of a service."""

    name: str | None = None
    http: str | None = None
    tcp: str | None = None
    expected_status: list[int] | None = None
    json_path: str | None = None
    json_equals: Any = None

    @model_validator(mode="after")
    def check_target(self) -> "ProbeSpec":
        if (self.http is None) == (self.tcp is None):
            raise ValueError("probe needs exactly one of 'http' or 'tcp'")
        if self.json_path is not None and self.json_equals is None:
            raise ValueError("'json_path' needs 'json_equals'")
        return self


Command = Union[str, list[str]]


class ServiceSpec(BaseModel):
    """One service unit."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str | None = None
    start: Command
    stop: Command | None = None
    start_timeout_seconds: float | None = Field(default=None, gt=0)
    depends_on: list[str] = Field(default_factory=list)
    probes: list[ProbeSpec] = Field(default_factory=list)


class _CheckSpecBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    on_failure: CheckStatus = CheckStatus.FAIL

    @field_validator("on_failure")
    @classmethod
    def failure_status(cls, v: CheckStatus) -> CheckStatus:
        if v == CheckStatus.PASS:
            raise ValueError("on_failure must be FAIL or WARN")
        return v


class HttpCheckSpec(_CheckSpecBase):
    type: Literal["http"]
    url: str
    expected_status: list[int] = Field(default_factory=lambda: [200])
    json_path: str | None = None
    json_equals: Any = None
    timeout_ms: int | None = Field(default=None, gt=0)


class ToolCheckSpec(_CheckSpecBase):
    type: Literal["tool"]
    executable: str
    version_args: list[str] | None = None


class PathCheckSpec(_CheckSpecBase):
    type: Literal["path"]
    path: str
    kind: Literal["any", "file", "directory"] = "any"


class ConnectivityCheckSpec(_CheckSpecBase):
    type: Literal["connectivity"]
    source: str | None = None
    url: str | None = None
    tcp: str | None = None
    expected_status: list[int] = Field(default_factory=lambda: [200])
    requires: list[str] = Field(default_factory=list)
    timeout_ms: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_target(self) -> "ConnectivityCheckSpec":
        if (self.url is None) == (self.tcp is None):
            raise ValueError("connectivity check needs exactly one of 'url' or 'tcp'")
        return self


CheckSpec = Annotated[
    Union[HttpCheckSpec, ToolCheckSpec, PathCheckSpec, ConnectivityCheckSpec],
    Field(discriminator="type"),
]


class PlanFile(BaseModel):
    """Top-level plan definition."""

    model_config = ConfigDict(extra="forbid")

    policy: Literal["abort", "continue", "restart-once"] | None = None
    deadline_seconds: float | None = Field(default=None, gt=0)
    defaults: ProbeDefaults = Field(default_factory=ProbeDefaults)
    services: list[ServiceSpec] = Field(default_factory=list)
    checks: list[CheckSpec] = Field(default_factory=list)
