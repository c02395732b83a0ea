"""Tests for configuration module."""

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
import yaml
from pydantic import ValidationError

from stackup.config import (
    CorsSettings,
    LoggingSettings,
    OrchestratorSettings,
    ProbeSettings,
    ReportSettings,
    ServerSettings,
    Settings,
    _deep_merge,
    _load_yaml_config,
    find_config_dir,
    get_settings,
)
from stackup.models.endpoint import BackoffMode


class TestServerSettings:
    """Tests for ServerSettings."""

    def test_default_values(self):
        """Test default values are set correctly."""
        settings = ServerSettings()
        assert settings.host == "0.0.0.0"
        assert settings.port == 8090
        assert isinstance(settings.cors, CorsSettings)

    def test_cors_is_read_only(self):
        """Test the default CORS methods only allow reads."""
        assert CorsSettings().allowed_methods == ["GET", "OPTIONS"]


class TestLoggingSettings:
    """Tests for LoggingSettings."""

    def test_default_values(self):
        """Test default values."""
        settings = LoggingSettings()
        assert settings.level == "INFO"
        assert settings.format == "text"

    def test_invalid_level_rejected(self):
        """Test invalid log level is rejected."""
        with pytest.raises(ValidationError):
            LoggingSettings(level="VERBOSE")


class TestOrchestratorSettings:
    """Tests for OrchestratorSettings."""

    def test_default_values(self):
        """Test abort is the default policy and there is no deadline."""
        settings = OrchestratorSettings()
        assert settings.policy == "abort"
        assert settings.deadline_seconds is None
        assert settings.probe_concurrency is True

    def test_invalid_policy_rejected(self):
        """Test unknown policies are rejected."""
        with pytest.raises(ValidationError):
            OrchestratorSettings(policy="retry-forever")

    def test_deadline_must_be_positive(self):
        """Test non-positive deadlines are rejected."""
        with pytest.raises(ValidationError):
            OrchestratorSettings(deadline_seconds=0)


class TestProbeSettings:
    """Tests for ProbeSettings."""

    def test_default_values(self):
        """Test defaults match ten attempts ten seconds apart."""
        settings = ProbeSettings()
        assert settings.interval_ms == 10000
        assert settings.max_attempts == 10
        assert settings.timeout_ms == 5000
        assert settings.backoff == BackoffMode.CONSTANT

    def test_max_attempts_minimum(self):
        """Test at least one attempt is required."""
        with pytest.raises(ValidationError):
            ProbeSettings(max_attempts=0)

    def test_negative_interval_rejected(self):
        """Test negative intervals are rejected."""
        with pytest.raises(ValidationError):
            ProbeSettings(interval_ms=-1)


class TestReportSettings:
    """Tests for ReportSettings."""

    def test_json_file_defaults_next_to_status(self):
        """Test the JSON report sits next to the status file."""
        settings = ReportSettings(status_file=Path("/var/lib/stackup/status.env"))
        assert settings.resolved_json_file == Path("/var/lib/stackup/status.json")

    def test_explicit_json_file(self):
        """Test an explicit JSON path is used as is."""
        settings = ReportSettings(json_file=Path("/tmp/report.json"))
        assert settings.resolved_json_file == Path("/tmp/report.json")


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_shallow_merge(self):
        """Test shallow dictionary merge."""
        result = _deep_merge({"a": 1, "b": 2}, {"b": 3, "c": 4})
        assert result == {"a": 1, "b": 3, "c": 4}

    def test_deep_merge(self):
        """Test deep dictionary merge."""
        result = _deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3, "z": 4}})
        assert result == {"a": {"x": 1, "y": 3, "z": 4}}

    def test_override_non_dict(self):
        """Test override replaces non-dict values."""
        assert _deep_merge({"a": {"x": 1}}, {"a": "replaced"}) == {"a": "replaced"}


class TestLoadYamlConfig:
    """Tests for YAML config loading."""

    def test_load_config_yaml(self):
        """Test loading config.yaml."""
        with TemporaryDirectory() as tmpdir:
            config_dir = Path(tmpdir)
            (config_dir / "config.yaml").write_text(yaml.dump({"probes": {"max_attempts": 3}}))

            config = _load_yaml_config(config_dir)
            assert config["probes"]["max_attempts"] == 3

    def test_local_override(self):
        """Test config.local.yaml overrides config.yaml."""
        with TemporaryDirectory() as tmpdir:
            config_dir = Path(tmpdir)
            (config_dir / "config.yaml").write_text(
                yaml.dump({"orchestrator": {"policy": "abort", "probe_concurrency": False}})
            )
            (config_dir / "config.local.yaml").write_text(
                yaml.dump({"orchestrator": {"policy": "continue"}})
            )

            config = _load_yaml_config(config_dir)
            assert config["orchestrator"]["policy"] == "continue"
            assert config["orchestrator"]["probe_concurrency"] is False

    def test_missing_config_returns_empty(self):
        """Test missing config file returns empty dict."""
        with TemporaryDirectory() as tmpdir:
            assert _load_yaml_config(Path(tmpdir)) == {}


class TestSettings:
    """Tests for main Settings class."""

    def test_nested_settings_access(self):
        """Test nested settings are reachable."""
        settings = Settings()
        assert settings.report.status_file == Path("/tmp/stackup-status.env")
        assert settings.probes.max_attempts == 10

    def test_environment_variable_override(self, monkeypatch):
        """Test STACKUP_ environment variables override defaults."""
        monkeypatch.setenv("STACKUP_ORCHESTRATOR__POLICY", "restart-once")
        monkeypatch.setenv("STACKUP_PROBES__INTERVAL_MS", "250")

        settings = Settings()
        assert settings.orchestrator.policy == "restart-once"
        assert settings.probes.interval_ms == 250

    def test_load_from_yaml(self):
        """Test settings load from a config directory."""
        with TemporaryDirectory() as tmpdir:
            config_dir = Path(tmpdir)
            (config_dir / "config.yaml").write_text(
                yaml.dump(
                    {
                        "report": {"status_file": "/srv/status.env"},
                        "logging": {"format": "json"},
                    }
                )
            )

            settings = Settings(config_dir=config_dir)
            assert settings.report.status_file == Path("/srv/status.env")
            assert settings.logging.format == "json"

    def test_explicit_values_win_over_yaml(self):
        """Test explicit keyword values override the YAML file."""
        with TemporaryDirectory() as tmpdir:
            config_dir = Path(tmpdir)
            (config_dir / "config.yaml").write_text(yaml.dump({"server": {"port": 9000}}))

            settings = Settings(config_dir=config_dir, server={"port": 9100})
            assert settings.server.port == 9100

    def test_environment_wins_over_yaml(self, monkeypatch, tmp_path):
        """Test STACKUP_ variables override keys the YAML files set."""
        (tmp_path / "config.yaml").write_text(
            yaml.dump(
                {
                    "report": {"status_file": "/tmp/stackup-status.env", "max_age_seconds": 600},
                    "orchestrator": {"policy": "abort"},
                }
            )
        )
        monkeypatch.setenv("STACKUP_REPORT__STATUS_FILE", "/var/lib/stackup/status.env")
        monkeypatch.setenv("STACKUP_ORCHESTRATOR__POLICY", "continue")

        settings = Settings(config_dir=tmp_path)

        assert settings.report.status_file == Path("/var/lib/stackup/status.env")
        assert settings.orchestrator.policy == "continue"
        # Sibling keys from the YAML file survive the nested override
        assert settings.report.max_age_seconds == 600

    def test_shipped_config_honours_environment(self, monkeypatch):
        """Test the bundled config/config.yaml can be overridden from the environment."""
        config_dir = Path(__file__).resolve().parents[2] / "config"
        monkeypatch.setenv("STACKUP_REPORT__STATUS_FILE", "/var/lib/stackup/status.env")

        settings = Settings(config_dir=config_dir)

        assert settings.report.status_file == Path("/var/lib/stackup/status.env")
        assert settings.probes.interval_ms == 10000

    def test_yaml_does_not_leak_between_instances(self, tmp_path):
        """Test YAML values apply only to the instance built from that directory."""
        (tmp_path / "config.yaml").write_text(yaml.dump({"server": {"port": 9000}}))

        assert Settings(config_dir=tmp_path).server.port == 9000
        assert Settings().server.port == 8090

    def test_validate_required_defaults(self):
        """Test default settings are consistent."""
        Settings().validate_required()

    def test_validate_required_backoff_cap(self):
        """Test an exponential cap below the interval is rejected."""
        settings = Settings(
            probes=ProbeSettings(
                interval_ms=5000, backoff=BackoffMode.EXPONENTIAL, max_interval_ms=1000
            )
        )
        with pytest.raises(ValueError, match="max_interval_ms"):
            settings.validate_required()

    def test_validate_required_distinct_report_files(self):
        """Test the JSON report cannot overwrite the status file."""
        settings = Settings(
            report=ReportSettings(
                status_file=Path("/tmp/s.env"), json_file=Path("/tmp/s.env")
            )
        )
        with pytest.raises(ValueError, match="json_file"):
            settings.validate_required()


class TestFindConfigDir:
    """Tests for config directory discovery."""

    def test_environment_variable(self, monkeypatch, tmp_path):
        """Test STACKUP_CONFIG_DIR takes precedence."""
        monkeypatch.setenv("STACKUP_CONFIG_DIR", str(tmp_path))
        assert find_config_dir() == tmp_path

    def test_local_config_directory(self, monkeypatch, tmp_path):
        """Test ./config is used when present."""
        monkeypatch.delenv("STACKUP_CONFIG_DIR", raising=False)
        (tmp_path / "config").mkdir()
        monkeypatch.chdir(tmp_path)
        assert find_config_dir() == tmp_path / "config"

    def test_none_found(self, monkeypatch, tmp_path):
        """Test None when nothing is configured."""
        monkeypatch.delenv("STACKUP_CONFIG_DIR", raising=False)
        monkeypatch.chdir(tmp_path)
        assert find_config_dir() is None

    def test_get_settings_uses_discovered_dir(self, monkeypatch, tmp_path):
        """Test get_settings loads YAML from the discovered directory."""
        (tmp_path / "config.yaml").write_text(yaml.dump({"server": {"port": 9123}}))
        monkeypatch.setenv("STACKUP_CONFIG_DIR", str(tmp_path))
        get_settings.cache_clear()
        try:
            assert get_settings().server.port == 9123
        finally:
            get_settings.cache_clear()
