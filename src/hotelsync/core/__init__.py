"""Core module - Shared types, configuration and fingerprints."""

from hotelsync.core.config import (
    BreakerConfig,
    ConfigurationError,
    DedupConfig,
    EngineConfig,
    HealthConfig,
    MessageKindConfig,
    RateConfig,
    RetryConfig,
    load_config,
)
from hotelsync.core.hashing import Sha256Codec, compute_fingerprint
from hotelsync.core.types import (
    Direction,
    ErrorKind,
    LaneState,
    MessageKind,
    ProcessingState,
    RateOperation,
    Severity,
)

__all__ = [
    # Config
    "BreakerConfig",
    "ConfigurationError",
    "DedupConfig",
    "EngineConfig",
    "HealthConfig",
    "MessageKindConfig",
    "RateConfig",
    "RetryConfig",
    "load_config",
    # Hashing
    "Sha256Codec",
    "compute_fingerprint",
    # Types
    "Direction",
    "ErrorKind",
    "LaneState",
    "MessageKind",
    "ProcessingState",
    "RateOperation",
    "Severity",
]
