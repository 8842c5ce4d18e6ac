"""Tests for core configuration classes."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from hotelsync.core.config import (
    ConfigurationError,
    DedupConfig,
    EngineConfig,
    HealthConfig,
    MessageKindConfig,
    RateConfig,
    RetryConfig,
    apply_env_overrides,
    load_config,
)
from hotelsync.core.types import MessageKind


class TestEngineConfigDefaults:
    """Tests for default configuration values."""

    def test_retry_defaults(self) -> None:
        """Should retry three times with 5 to 60 minute backoff."""
        config = EngineConfig()
        assert config.retry.max_retries == 3
        assert config.retry.base_delay_minutes == 5
        assert config.retry.max_delay_minutes == 60

    def test_dedup_defaults(self) -> None:
        """Should remember fingerprints for 24 hours in memory."""
        config = EngineConfig()
        assert config.dedup.ttl_seconds == 86400
        assert config.dedup.backend == "memory"

    def test_health_defaults(self) -> None:
        """Should degrade at 30% and recover below 5% over 50 messages."""
        health = EngineConfig().health
        assert health.window_size == 50
        assert health.degrade_threshold == 0.30
        assert health.recover_threshold == 0.05

    def test_kind_defaults(self) -> None:
        """Should fall back to the message kind defaults."""
        config = EngineConfig()
        assert config.timeout_for(MessageKind.RATES) == 90
        assert config.batch_size_for(MessageKind.INVENTORY) == 100
        assert config.is_enabled(MessageKind.GROUP_BLOCK) is True

    def test_kind_overrides(self) -> None:
        """Should use configured timeout and batch size."""
        config = EngineConfig(
            message_kinds={
                MessageKind.RATES: MessageKindConfig(enabled=False, timeout_seconds=10, batch_size=5)
            }
        )
        assert config.timeout_for(MessageKind.RATES) == 10
        assert config.batch_size_for(MessageKind.RATES) == 5
        assert config.is_enabled(MessageKind.RATES) is False


class TestValidation:
    """Tests for section validation."""

    def test_rejects_zero_retries(self) -> None:
        """Should reject max_retries below 1."""
        with pytest.raises(ConfigurationError):
            RetryConfig(max_retries=0)

    def test_rejects_unknown_dedup_backend(self) -> None:
        """Should reject unsupported dedup backends."""
        with pytest.raises(ConfigurationError, match="dedup.backend"):
            DedupConfig(backend="memcached")

    def test_redis_backend_requires_url(self) -> None:
        """Should require redis_url for the redis backend."""
        with pytest.raises(ConfigurationError, match="redis_url"):
            DedupConfig(backend="redis")

    def test_rejects_inverted_health_thresholds(self) -> None:
        """Should require recover_threshold below degrade_threshold."""
        with pytest.raises(ConfigurationError):
            HealthConfig(degrade_threshold=0.05, recover_threshold=0.30)

    def test_rejects_unknown_tie_break(self) -> None:
        """Should reject unknown master tie-break strategies."""
        with pytest.raises(ConfigurationError):
            RateConfig(tie_break="last")


class TestFromDict:
    """Tests for EngineConfig.from_dict."""

    def test_reads_sections(self) -> None:
        """Should build nested sections from a mapping."""
        config = EngineConfig.from_dict(
            {
                "db_path": "/var/lib/hotelsync/sync.db",
                "retry": {"max_retries": 5},
                "rates": {"tie_break": "widest_overlap"},
                "message_kinds": {"reservation": {"timeout_seconds": 200}},
                "retention_days": 7,
            }
        )
        assert config.db_path == Path("/var/lib/hotelsync/sync.db")
        assert config.retry.max_retries == 5
        assert config.rates.tie_break == "widest_overlap"
        assert config.timeout_for(MessageKind.RESERVATION) == 200
        assert config.retention_days == 7

    def test_unknown_key_is_configuration_error(self) -> None:
        """Should wrap unknown keys in ConfigurationError."""
        with pytest.raises(ConfigurationError):
            EngineConfig.from_dict({"retry": {"attempts": 2}})

    def test_unknown_kind_is_configuration_error(self) -> None:
        """Should reject unknown message kinds."""
        with pytest.raises(ConfigurationError):
            EngineConfig.from_dict({"message_kinds": {"telex": {}}})


class TestEnvironment:
    """Tests for HOTELSYNC_* overrides and load_config."""

    def test_env_overrides_paths(self) -> None:
        """Should take db and log paths from the environment."""
        config = EngineConfig()
        apply_env_overrides(
            config,
            {"HOTELSYNC_DB_PATH": "/tmp/a.db", "HOTELSYNC_LOG_PATH": "/tmp/a.log"},
        )
        assert config.db_path == Path("/tmp/a.db")
        assert config.log_path == Path("/tmp/a.log")

    def test_redis_url_switches_backend(self) -> None:
        """Should select the redis backend when HOTELSYNC_REDIS_URL is set."""
        config = EngineConfig()
        apply_env_overrides(config, {"HOTELSYNC_REDIS_URL": "redis://localhost:6379/0"})
        assert config.dedup.backend == "redis"
        assert config.dedup.redis_url == "redis://localhost:6379/0"

    def test_invalid_env_value_rejected(self) -> None:
        """Should validate overridden sections."""
        with pytest.raises(ConfigurationError):
            apply_env_overrides(EngineConfig(), {"HOTELSYNC_MAX_RETRIES": "0"})

    @pytest.mark.parametrize("name", ["HOTELSYNC_MAX_RETRIES", "HOTELSYNC_RETENTION_DAYS"])
    def test_non_integer_env_value(self, name: str) -> None:
        """Should report non-numeric overrides as ConfigurationError."""
        with pytest.raises(ConfigurationError, match=name):
            apply_env_overrides(EngineConfig(), {name: "three"})

    def test_non_integer_file_value(self) -> None:
        with pytest.raises(ConfigurationError, match="retention_days"):
            EngineConfig.from_dict({"retention_days": "a week"})

    def test_load_config_from_file(self, tmp_path: Path) -> None:
        """Should read JSON then apply environment overrides."""
        config_file = tmp_path / "hotelsync.json"
        config_file.write_text(json.dumps({"retry": {"max_retries": 4}, "retention_days": 10}))

        config = load_config(config_file, environ={"HOTELSYNC_RETENTION_DAYS": "3"})

        assert config.retry.max_retries == 4
        assert config.retention_days == 3

    def test_load_config_uses_env_path(self, tmp_path: Path) -> None:
        """Should fall back to HOTELSYNC_CONFIG."""
        config_file = tmp_path / "conf.json"
        config_file.write_text(json.dumps({"dedup": {"backend": "sql"}}))

        config = load_config(environ={"HOTELSYNC_CONFIG": str(config_file)})

        assert config.dedup.backend == "sql"

    def test_missing_file(self, tmp_path: Path) -> None:
        """Should raise ConfigurationError for a missing file."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.json", environ={})

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Should raise ConfigurationError for malformed JSON."""
        config_file = tmp_path / "bad.json"
        config_file.write_text("{not json")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_config(config_file, environ={})
