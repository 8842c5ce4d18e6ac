"""Engine module - Lanes, deduplication, classification and rate resolution."""

from hotelsync.engine.circuit import CircuitBreaker, CircuitState
from hotelsync.engine.dedup import (
    DedupCache,
    DeduplicationLedger,
    DedupResult,
    MemoryDedupCache,
    RedisDedupCache,
)
from hotelsync.engine.dispatch import DispatchResult, MessageDispatcher, TransportResponse
from hotelsync.engine.errors import (
    Classification,
    ErrorClassifier,
    FailureSignal,
    InvalidTransitionError,
    RateValidationError,
    SyncError,
)
from hotelsync.engine.lane import LaneSnapshot, SyncLane, backoff
from hotelsync.engine.messages import ErrorRecord, MessageRecord
from hotelsync.engine.orchestrator import (
    DispatchDecision,
    Escalation,
    EscalationReason,
    SyncOrchestrator,
)
from hotelsync.engine.rates import RateEntry, RatePolicy, RateResolver
from hotelsync.engine.store import MemoryStore, SyncStore

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitState",
    # Deduplication
    "DedupCache",
    "DedupResult",
    "DeduplicationLedger",
    "MemoryDedupCache",
    "RedisDedupCache",
    # Dispatch
    "DispatchResult",
    "MessageDispatcher",
    "TransportResponse",
    # Errors
    "Classification",
    "ErrorClassifier",
    "FailureSignal",
    "InvalidTransitionError",
    "RateValidationError",
    "SyncError",
    # Lanes
    "LaneSnapshot",
    "SyncLane",
    "backoff",
    # Records
    "ErrorRecord",
    "MessageRecord",
    # Orchestrator
    "DispatchDecision",
    "Escalation",
    "EscalationReason",
    "SyncOrchestrator",
    # Rates
    "RateEntry",
    "RatePolicy",
    "RateResolver",
    # Storage
    "MemoryStore",
    "SyncStore",
]
