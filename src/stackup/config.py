"""Settings for runs and the status API.

Sources, highest priority first:
1. Explicit values (CLI flags are applied on top of the loaded settings)
2. Environment variables (``STACKUP_`` prefix, ``__`` between nested keys)
3. A ``.env`` file in the working directory
4. ``config.local.yaml`` then ``config.yaml`` from the config directory
5. Defaults below

The config directory is ``--config-dir`` if given, else ``$STACKUP_CONFIG_DIR``,
else ``./config`` if it exists.
"""

import os
from contextvars import ContextVar
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from stackup.models.endpoint import (
    DEFAULT_INTERVAL_MS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT_MS,
    BackoffMode,
)


class CorsSettings(BaseModel):
    """CORS configuration."""

    allowed_origins: list[str] = ["http://localhost:3000"]
    allowed_methods: list[str] = ["GET", "OPTIONS"]
    allowed_headers: list[str] = [
        "Content-Type",
        "X-Request-ID",
    ]


class ServerSettings(BaseModel):
    """Status API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8090
    cors: CorsSettings = Field(default_factory=CorsSettings)


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class OrchestratorSettings(BaseModel):
    """Plan execution defaults."""

    policy: Literal["abort", "continue", "restart-once"] = "abort"
    deadline_seconds: float | None = Field(default=None, gt=0)
    probe_concurrency: bool = True


class ProbeSettings(BaseModel):
    """Defaults for probes that leave these values unset."""

    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, ge=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    backoff: BackoffMode = BackoffMode.CONSTANT
    max_interval_ms: int = Field(default=60000, ge=0)


class ReportSettings(BaseModel):
    """Where run results are handed off to later stages."""

    status_file: Path = Path("/tmp/stackup-status.env")
    json_file: Path | None = None
    max_age_seconds: float | None = Field(default=None, gt=0)

    @property
    def resolved_json_file(self) -> Path:
        return self.json_file or self.status_file.with_suffix(".json")


# Later files override earlier ones
CONFIG_FILES = ("config.yaml", "config.local.yaml")

CONFIG_DIR_ENV = "STACKUP_CONFIG_DIR"


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge ``override`` into a copy of ``base``; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = (
            _deep_merge(current, value)
            if isinstance(current, dict) and isinstance(value, dict)
            else value
        )
    return merged


def _load_yaml_config(config_dir: Path) -> dict:
    """Layer the YAML files of ``config_dir``; missing files are skipped."""
    config: dict = {}
    for name in CONFIG_FILES:
        path = config_dir / name
        if not path.is_file():
            continue
        with path.open(encoding="utf-8") as f:
            config = _deep_merge(config, yaml.safe_load(f) or {})
    return config


def find_config_dir() -> Path | None:
    """Config directory from ``$STACKUP_CONFIG_DIR`` or ``./config``."""
    from_env = os.environ.get(CONFIG_DIR_ENV)
    if from_env:
        return Path(from_env)
    local = Path.cwd() / "config"
    return local if local.is_dir() else None


# YAML values for the Settings instance being built
_yaml_values: ContextVar[dict | None] = ContextVar("yaml_values", default=None)


class YamlConfigSource(PydanticBaseSettingsSource):
    """Settings source for the config directory's YAML files.

    Ranked below environment variables and ``.env``, so ``STACKUP_*`` values
    override keys the YAML files also set.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        values = _yaml_values.get() or {}
        return values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(_yaml_values.get() or {})


class Settings(BaseSettings):
    """Everything a run or the status API can be configured with."""

    model_config = SettingsConfigDict(
        env_prefix="STACKUP_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    probes: ProbeSettings = Field(default_factory=ProbeSettings)
    report: ReportSettings = Field(default_factory=ReportSettings)

    def __init__(self, config_dir: Path | None = None, **data):
        token = _yaml_values.set(_load_yaml_config(config_dir) if config_dir is not None else {})
        try:
            super().__init__(**data)
        finally:
            _yaml_values.reset(token)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Keyword values > environment > .env > YAML files > defaults
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSource(settings_cls),
            file_secret_settings,
        )

    def validate_required(self) -> None:
        """Reject settings that contradict each other.

        Raises:
            ValueError: Describing the first contradiction found.
        """
        probes = self.probes
        if probes.backoff == BackoffMode.EXPONENTIAL and probes.max_interval_ms < probes.interval_ms:
            raise ValueError("probes.max_interval_ms must not be below probes.interval_ms")

        if self.report.json_file is not None and self.report.json_file == self.report.status_file:
            raise ValueError("report.json_file must differ from report.status_file")


@lru_cache
def get_settings(config_dir: Path | None = None) -> Settings:
    """Settings for ``config_dir`` (or the discovered one), cached per directory."""
    return Settings(config_dir=config_dir or find_config_dir())
