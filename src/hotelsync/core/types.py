"""Shared types for hotelsync.

This module defines the enums used across the engine, the persistence layer
and the operator surfaces:
- MessageKind: message families exchanged with the distribution partner
- Direction, ProcessingState: message history vocabulary
- LaneState: canonical lifecycle of a synchronization lane
- ErrorKind, Severity: failure taxonomy
- RateOperation: rate message operations and their linked-rate support
"""

from __future__ import annotations

from enum import Enum


class MessageKind(str, Enum):
    """Message families exchanged with the partner."""

    INVENTORY = "inventory"
    RATES = "rates"
    RESERVATION = "reservation"
    RESTRICTIONS = "restrictions"
    GROUP_BLOCK = "group_block"
    RESPONSE = "response"

    @property
    def partner_message_name(self) -> str:
        """Root element name of the partner request for this kind."""
        return _PARTNER_MESSAGE_NAMES[self]

    @property
    def default_timeout_seconds(self) -> int:
        """Default dispatch timeout before the caller reports a Timeout."""
        return _DEFAULT_TIMEOUTS[self]

    @property
    def default_batch_size(self) -> int:
        """Default number of business items per outbound message."""
        return _DEFAULT_BATCH_SIZES[self]

    @property
    def priority(self) -> int:
        """Queue priority (1 = highest)."""
        return _PRIORITIES[self]


_PARTNER_MESSAGE_NAMES = {
    MessageKind.INVENTORY: "OTA_HotelInvCountNotifRQ",
    MessageKind.RATES: "OTA_HotelRateNotifRQ",
    MessageKind.RESERVATION: "OTA_HotelResNotifRQ",
    MessageKind.RESTRICTIONS: "OTA_HotelAvailNotifRQ",
    MessageKind.GROUP_BLOCK: "OTA_HotelInvBlockNotifRQ",
    MessageKind.RESPONSE: "OTA_HotelResNotifRS",
}

_DEFAULT_TIMEOUTS = {
    MessageKind.INVENTORY: 60,
    MessageKind.RATES: 90,
    MessageKind.RESERVATION: 120,
    MessageKind.RESTRICTIONS: 45,
    MessageKind.GROUP_BLOCK: 180,
    MessageKind.RESPONSE: 30,
}

_DEFAULT_BATCH_SIZES = {
    MessageKind.INVENTORY: 100,
    MessageKind.RATES: 50,
    MessageKind.RESERVATION: 20,
    MessageKind.RESTRICTIONS: 200,
    MessageKind.GROUP_BLOCK: 10,
    MessageKind.RESPONSE: 1,
}

_PRIORITIES = {
    MessageKind.RESERVATION: 1,
    MessageKind.RESPONSE: 2,
    MessageKind.INVENTORY: 3,
    MessageKind.RATES: 4,
    MessageKind.RESTRICTIONS: 5,
    MessageKind.GROUP_BLOCK: 6,
}


class Direction(str, Enum):
    """Direction of a message relative to the property-management platform."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"


class ProcessingState(str, Enum):
    """Processing state of a single message record."""

    PENDING = "pending"
    SENT = "sent"
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingState.PROCESSED, ProcessingState.FAILED)


class LaneState(str, Enum):
    """Lifecycle state of a (property, message kind) synchronization lane."""

    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_PENDING = "retry_pending"
    DEGRADED = "degraded"


class Severity(str, Enum):
    """Severity of a classified failure."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric rank (1 = critical, 4 = low)."""
        return _SEVERITY_RANKS[self]


_SEVERITY_RANKS = {
    Severity.CRITICAL: 1,
    Severity.HIGH: 2,
    Severity.MEDIUM: 3,
    Severity.LOW: 4,
}


class ErrorKind(str, Enum):
    """Closed failure taxonomy driving retry policy.

    Severity, retryability and the recommended delay are properties of the
    kind itself and are never set independently.
    """

    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    PROTOCOL_ENCODING = "protocol_encoding"
    BUSINESS_LOGIC = "business_logic"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    DATA_MAPPING = "data_mapping"
    UNKNOWN = "unknown"

    @property
    def can_retry(self) -> bool:
        return self in _RETRYABLE_KINDS

    @property
    def retry_delay_seconds(self) -> int:
        return _RETRY_DELAYS.get(self, 0)

    @property
    def severity(self) -> Severity:
        return _KIND_SEVERITIES[self]

    @property
    def description(self) -> str:
        return _KIND_DESCRIPTIONS[self]


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.CONNECTION, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.UNKNOWN}
)

_RETRY_DELAYS = {
    ErrorKind.CONNECTION: 30,
    ErrorKind.TIMEOUT: 60,
    ErrorKind.RATE_LIMIT: 300,
    ErrorKind.UNKNOWN: 120,
}

_KIND_SEVERITIES = {
    ErrorKind.AUTHENTICATION: Severity.CRITICAL,
    ErrorKind.CONFIGURATION: Severity.CRITICAL,
    ErrorKind.CONNECTION: Severity.HIGH,
    ErrorKind.BUSINESS_LOGIC: Severity.HIGH,
    ErrorKind.PROTOCOL_ENCODING: Severity.MEDIUM,
    ErrorKind.VALIDATION: Severity.MEDIUM,
    ErrorKind.DATA_MAPPING: Severity.MEDIUM,
    ErrorKind.TIMEOUT: Severity.LOW,
    ErrorKind.RATE_LIMIT: Severity.LOW,
    ErrorKind.UNKNOWN: Severity.MEDIUM,
}

_KIND_DESCRIPTIONS = {
    ErrorKind.CONNECTION: "Unable to connect to the partner service",
    ErrorKind.AUTHENTICATION: "Authentication failed with the partner",
    ErrorKind.VALIDATION: "Data validation error",
    ErrorKind.PROTOCOL_ENCODING: "SOAP/XML processing error",
    ErrorKind.BUSINESS_LOGIC: "Business rule violation",
    ErrorKind.RATE_LIMIT: "Too many requests sent",
    ErrorKind.TIMEOUT: "Request timeout",
    ErrorKind.CONFIGURATION: "Configuration error",
    ErrorKind.DATA_MAPPING: "Data mapping/conversion error",
    ErrorKind.UNKNOWN: "Unknown error occurred",
}


class RateOperation(str, Enum):
    """Operation carried by a rate message."""

    UPDATE = "update"
    CREATE = "create"
    INACTIVE = "inactive"
    REMOVE_ROOM_TYPES = "remove_room_types"
    FULL_SYNC = "full_sync"
    DELTA = "delta"

    @property
    def supports_linked_rates(self) -> bool:
        return self in (RateOperation.UPDATE, RateOperation.CREATE, RateOperation.DELTA)

    @property
    def is_creation(self) -> bool:
        return self is RateOperation.CREATE
