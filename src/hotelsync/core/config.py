"""Configuration classes for hotelsync.

This module defines the engine configuration shared by the orchestrator,
the persistence layer, the scheduler and the CLI. Configuration is read from
an optional JSON file and then overridden by HOTELSYNC_* environment
variables.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hotelsync.core.types import MessageKind

ENV_PREFIX = "HOTELSYNC_"

DEDUP_BACKENDS = ("memory", "sql", "redis")
TIE_BREAKS = ("first", "widest_overlap")


class ConfigurationError(ValueError):
    """Raised when configuration values are missing or invalid."""


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class RetryConfig:
    """Lane retry policy.

    Attributes:
        max_retries: Failures allowed before a lane becomes Failed.
        base_delay_minutes: Delay before the first retry.
        max_delay_minutes: Upper bound of the exponential backoff.
    """

    max_retries: int = 3
    base_delay_minutes: int = 5
    max_delay_minutes: int = 60

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ConfigurationError("retry.max_retries must be at least 1")
        if self.base_delay_minutes <= 0 or self.max_delay_minutes < self.base_delay_minutes:
            raise ConfigurationError("retry delays must satisfy 0 < base <= max")


@dataclass
class DedupConfig:
    """Deduplication ledger settings."""

    ttl_seconds: int = 24 * 60 * 60
    backend: str = "memory"
    redis_url: str | None = None
    key_prefix: str = "hotelsync:dedup:"

    def __post_init__(self) -> None:
        if self.backend not in DEDUP_BACKENDS:
            raise ConfigurationError(
                f"dedup.backend must be one of {', '.join(DEDUP_BACKENDS)}, got {self.backend!r}"
            )
        if self.backend == "redis" and not self.redis_url:
            raise ConfigurationError("dedup.redis_url is required for the redis backend")
        if self.ttl_seconds <= 0:
            raise ConfigurationError("dedup.ttl_seconds must be positive")


@dataclass
class HealthConfig:
    """Sliding-window health evaluation.

    Attributes:
        window_size: Number of recent terminal outbound messages considered.
        degrade_threshold: Failure rate at or above which a lane is Degraded.
        recover_threshold: Failure rate below which a Degraded lane recovers.
        min_samples: Messages required before the window is evaluated.
        escalation_threshold: Consecutive failures that trigger escalation.
    """

    window_size: int = 50
    degrade_threshold: float = 0.30
    recover_threshold: float = 0.05
    min_samples: int = 10
    escalation_threshold: int = 3

    def __post_init__(self) -> None:
        if not 0 < self.recover_threshold < self.degrade_threshold <= 1:
            raise ConfigurationError(
                "health thresholds must satisfy 0 < recover_threshold < degrade_threshold <= 1"
            )
        if self.window_size < 1 or self.min_samples < 1:
            raise ConfigurationError("health.window_size and health.min_samples must be positive")


@dataclass
class RateConfig:
    """Linked-rate handling policy."""

    external_handles_linked: bool = False
    partner_supports_linked: bool = True
    tie_break: str = "first"

    def __post_init__(self) -> None:
        if self.tie_break not in TIE_BREAKS:
            raise ConfigurationError(
                f"rates.tie_break must be one of {', '.join(TIE_BREAKS)}, got {self.tie_break!r}"
            )


@dataclass
class BreakerConfig:
    """Circuit breaker guarding the partner transport."""

    threshold: int = 5
    reset_timeout_seconds: float = 60.0


@dataclass
class MessageKindConfig:
    """Per message kind overrides."""

    enabled: bool = True
    timeout_seconds: int | None = None
    batch_size: int | None = None


@dataclass
class EngineConfig:
    """Top-level configuration for the synchronization engine."""

    db_path: Path = field(default_factory=lambda: Path("hotelsync.db"))
    log_path: Path = field(default_factory=lambda: Path("hotelsync.log"))
    retry: RetryConfig = field(default_factory=RetryConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    rates: RateConfig = field(default_factory=RateConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    message_kinds: dict[MessageKind, MessageKindConfig] = field(default_factory=dict)
    retry_poll_seconds: int = 60
    retention_days: int = 30

    def kind_settings(self, kind: MessageKind) -> MessageKindConfig:
        """Get settings for a message kind (defaults when not configured)."""
        return self.message_kinds.get(kind, MessageKindConfig())

    def timeout_for(self, kind: MessageKind) -> int:
        """Dispatch timeout in seconds for a message kind."""
        configured = self.kind_settings(kind).timeout_seconds
        return configured if configured is not None else kind.default_timeout_seconds

    def batch_size_for(self, kind: MessageKind) -> int:
        """Batch size for a message kind."""
        configured = self.kind_settings(kind).batch_size
        return configured if configured is not None else kind.default_batch_size

    def is_enabled(self, kind: MessageKind) -> bool:
        return self.kind_settings(kind).enabled

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Build a configuration from a parsed JSON document.

        Args:
            data: Mapping with optional sections retry, dedup, health, rates,
                breaker and message_kinds.

        Returns:
            EngineConfig instance.

        Raises:
            ConfigurationError: If a section has unknown keys or bad values.
        """
        try:
            kinds = {
                MessageKind(name): MessageKindConfig(**settings)
                for name, settings in data.get("message_kinds", {}).items()
            }
            config = cls(
                retry=RetryConfig(**data.get("retry", {})),
                dedup=DedupConfig(**data.get("dedup", {})),
                health=HealthConfig(**data.get("health", {})),
                rates=RateConfig(**data.get("rates", {})),
                breaker=BreakerConfig(**data.get("breaker", {})),
                message_kinds=kinds,
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        except ValueError as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        if "db_path" in data:
            config.db_path = Path(data["db_path"])
        if "log_path" in data:
            config.log_path = Path(data["log_path"])
        if "retry_poll_seconds" in data:
            config.retry_poll_seconds = _as_int(data["retry_poll_seconds"], "retry_poll_seconds")
        if "retention_days" in data:
            config.retention_days = _as_int(data["retention_days"], "retention_days")
        return config


def apply_env_overrides(config: EngineConfig, environ: dict[str, str] | None = None) -> None:
    """Override configuration values from HOTELSYNC_* environment variables.

    Args:
        config: Configuration to update in place.
        environ: Environment mapping (defaults to os.environ).
    """
    env = os.environ if environ is None else environ

    if db_path := env.get(f"{ENV_PREFIX}DB_PATH"):
        config.db_path = Path(db_path)
    if log_path := env.get(f"{ENV_PREFIX}LOG_PATH"):
        config.log_path = Path(log_path)
    if redis_url := env.get(f"{ENV_PREFIX}REDIS_URL"):
        config.dedup.redis_url = redis_url
        config.dedup.backend = "redis"
    if backend := env.get(f"{ENV_PREFIX}DEDUP_BACKEND"):
        config.dedup.backend = backend
    if max_retries := env.get(f"{ENV_PREFIX}MAX_RETRIES"):
        config.retry.max_retries = _as_int(max_retries, f"{ENV_PREFIX}MAX_RETRIES")
    if retention := env.get(f"{ENV_PREFIX}RETENTION_DAYS"):
        config.retention_days = _as_int(retention, f"{ENV_PREFIX}RETENTION_DAYS")

    # Re-run validation on the touched sections
    config.retry.__post_init__()
    config.dedup.__post_init__()


def load_config(path: Path | None = None, environ: dict[str, str] | None = None) -> EngineConfig:
    """Load configuration from a JSON file and the environment.

    Args:
        path: Optional JSON config file. Falls back to HOTELSYNC_CONFIG.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        EngineConfig instance.
    """
    env = os.environ if environ is None else environ
    config_path = path or (Path(env[f"{ENV_PREFIX}CONFIG"]) if f"{ENV_PREFIX}CONFIG" in env else None)

    data: dict[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            data = dict(json.loads(config_path.read_text()))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {config_path} is not valid JSON: {e}") from e

    config = EngineConfig.from_dict(data)
    apply_env_overrides(config, env)
    return config
