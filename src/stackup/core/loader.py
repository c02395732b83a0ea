"""Builds a dependency plan and check suite from a YAML plan file."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from stackup.config import ProbeSettings
from stackup.core.actions import CommandAction
from stackup.core.checks import (
    Check,
    CheckSuite,
    ConnectivityCheck,
    HttpCheck,
    PathCheck,
    ToolCheck,
)
from stackup.core.plan import DependencyPlan, ServiceUnit
from stackup.models.endpoint import Endpoint, EndpointKind, HealthProbe
from stackup.models.plan_file import (
    CheckSpec,
    ConnectivityCheckSpec,
    HttpCheckSpec,
    PathCheckSpec,
    PlanFile,
    ProbeDefaults,
    ProbeSpec,
    ServiceSpec,
)
from stackup.utils.errors import ConfigError, PlanFileError

logger = logging.getLogger(__name__)


@dataclass
class LoadedPlan:
    """Everything a plan file defines."""

    plan: DependencyPlan
    checks: CheckSuite
    policy: str | None = None
    deadline_seconds: float | None = None


def _effective_defaults(settings: ProbeSettings, overrides: ProbeDefaults) -> ProbeSettings:
    return settings.model_copy(update=overrides.model_dump(exclude_none=True))


def build_probe(spec: ProbeSpec, service_id: str, index: int, defaults: ProbeSettings) -> HealthProbe:
    """Turn a probe spec into a HealthProbe, filling unset values from defaults."""
    values = defaults.model_copy(update=spec.model_dump(
        include={"interval_ms", "max_attempts", "timeout_ms", "backoff", "max_interval_ms"},
        exclude_none=True,
    ))
    if spec.tcp is not None:
        endpoint = Endpoint(kind=EndpointKind.TCP, target=spec.tcp, timeout_ms=values.timeout_ms)
    else:
        endpoint = Endpoint(
            kind=EndpointKind.HTTP,
            target=spec.http,
            expected_status=frozenset(spec.expected_status or [200]),
            json_path=spec.json_path,
            json_equals=spec.json_equals,
            timeout_ms=values.timeout_ms,
        )
    return HealthProbe(
        name=spec.name or f"{service_id}-probe-{index + 1}",
        endpoint=endpoint,
        interval_ms=values.interval_ms,
        max_attempts=values.max_attempts,
        backoff=values.backoff,
        max_interval_ms=values.max_interval_ms,
    )


def build_unit(spec: ServiceSpec, defaults: ProbeSettings) -> ServiceUnit:
    return ServiceUnit(
        id=spec.id,
        display_name=spec.name or spec.id,
        start_action=CommandAction(spec.start, timeout_seconds=spec.start_timeout_seconds),
        stop_action=(
            CommandAction(spec.stop, timeout_seconds=spec.start_timeout_seconds)
            if spec.stop is not None
            else None
        ),
        probes=[build_probe(p, spec.id, i, defaults) for i, p in enumerate(spec.probes)],
        depends_on=frozenset(spec.depends_on),
    )


def build_check(spec: CheckSpec, defaults: ProbeSettings) -> Check:
    timeout_ms = getattr(spec, "timeout_ms", None) or defaults.timeout_ms
    if isinstance(spec, HttpCheckSpec):
        endpoint = Endpoint(
            target=spec.url,
            expected_status=frozenset(spec.expected_status),
            json_path=spec.json_path,
            json_equals=spec.json_equals,
            timeout_ms=timeout_ms,
        )
        return HttpCheck(spec.name, endpoint, on_failure=spec.on_failure)
    if isinstance(spec, ConnectivityCheckSpec):
        if spec.tcp is not None:
            endpoint = Endpoint(kind=EndpointKind.TCP, target=spec.tcp, timeout_ms=timeout_ms)
        else:
            endpoint = Endpoint(
                target=spec.url,
                expected_status=frozenset(spec.expected_status),
                timeout_ms=timeout_ms,
            )
        return ConnectivityCheck(
            spec.name,
            endpoint,
            requires=spec.requires,
            source=spec.source,
            on_failure=spec.on_failure,
        )
    if isinstance(spec, PathCheckSpec):
        return PathCheck(spec.name, spec.path, kind=spec.kind, on_failure=spec.on_failure)
    return ToolCheck(
        spec.name, spec.executable, version_args=spec.version_args, on_failure=spec.on_failure
    )


def build_plan(plan_file: PlanFile, probe_settings: ProbeSettings | None = None) -> LoadedPlan:
    """Build the runtime plan from a parsed plan file.

    Raises:
        ConfigError: If the plan is structurally invalid (cycles, unknown ids).
    """
    defaults = _effective_defaults(probe_settings or ProbeSettings(), plan_file.defaults)
    try:
        units = [build_unit(spec, defaults) for spec in plan_file.services]
        checks = [build_check(spec, defaults) for spec in plan_file.checks]
    except (ValidationError, ValueError) as e:
        raise PlanFileError(f"Invalid plan definition: {e}") from e

    plan = DependencyPlan.build(units)
    unit_ids = set(plan.unit_ids)
    for check in checks:
        if isinstance(check, ConnectivityCheck):
            unknown = [unit_id for unit_id in check.requires if unit_id not in unit_ids]
            if unknown:
                raise ConfigError(
                    f"Check '{check.name}' requires unknown unit(s): {', '.join(unknown)}",
                    {"check": check.name},
                )

    return LoadedPlan(
        plan=plan,
        checks=CheckSuite(checks),
        policy=plan_file.policy,
        deadline_seconds=plan_file.deadline_seconds,
    )


def parse_plan_text(text: str, expand_env: bool = True) -> PlanFile:
    """Parse plan YAML. ``$VAR`` and ``${VAR}`` are expanded from the environment."""
    if expand_env:
        text = os.path.expandvars(text)
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise PlanFileError(f"Plan file is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise PlanFileError("Plan file must contain a mapping at the top level")
    try:
        return PlanFile.model_validate(data)
    except ValidationError as e:
        raise PlanFileError(f"Invalid plan definition: {e}") from e


def load_plan(path: str | Path, probe_settings: ProbeSettings | None = None) -> LoadedPlan:
    """Read, validate and build a plan file.

    Raises:
        PlanFileError: If the file cannot be read or does not match the schema.
        ConfigError: If the dependency graph is invalid.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanFileError(f"Cannot read plan file {path}: {e}", {"path": str(path)}) from e

    loaded = build_plan(parse_plan_text(text), probe_settings)
    logger.info(
        f"Loaded plan {path} with {len(loaded.plan)} unit(s) and {len(loaded.checks)} check(s)",
        extra={"path": str(path)},
    )
    return loaded
