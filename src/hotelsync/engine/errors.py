"""Exceptions and failure classification for the sync engine.

This module provides:
- SyncError and its subclasses: exceptions raised by the engine itself
- TransportError and its subclasses: failures raised by partner transports
- FailureSignal: structured failure description handed over by a transport
- Classification: ErrorRecord fields derived from an ErrorKind
- ErrorClassifier: ordered rule table mapping failures to an ErrorKind
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hotelsync.core.types import ErrorKind, LaneState, MessageKind, Severity


class SyncError(Exception):
    """Base exception for sync engine errors."""


class InvalidTransitionError(SyncError):
    """A lane operation is not allowed from the lane's current state."""

    def __init__(self, operation: str, state: LaneState) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} a lane in state '{state.value}'")


class MessageStateError(SyncError):
    """A message record transition is not allowed."""


class UnknownMessageError(SyncError):
    """No message record exists for the given MessageID."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Unknown message: {message_id}")


class DuplicateMessageError(SyncError):
    """A message record with the same MessageID already exists."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message already recorded: {message_id}")


class UnknownErrorRecordError(SyncError):
    """No error record exists for the given id."""

    def __init__(self, error_id: int) -> None:
        self.error_id = error_id
        super().__init__(f"Unknown error record: {error_id}")


class UnknownLaneError(SyncError):
    """No lane exists for the given property and message kind."""

    def __init__(self, property_id: str, kind: MessageKind) -> None:
        self.property_id = property_id
        self.kind = kind
        super().__init__(f"Unknown lane: {property_id}/{kind.value}")


class KindDisabledError(SyncError):
    """The message kind is disabled by configuration."""

    def __init__(self, kind: MessageKind) -> None:
        self.kind = kind
        super().__init__(f"Message kind '{kind.value}' is disabled")


class RateValidationError(SyncError):
    """A rate batch failed validation or linked-rate resolution.

    Attributes:
        rate_plan_code: Offending rate plan code, when known.
    """

    def __init__(self, message: str, rate_plan_code: str | None = None) -> None:
        self.rate_plan_code = rate_plan_code
        super().__init__(message)


class TransportError(Exception):
    """Base exception for failures raised by a partner transport."""


class PartnerConnectionError(TransportError):
    """The partner endpoint could not be reached."""


class PartnerTimeoutError(TransportError):
    """The partner did not answer within the message kind's timeout."""


class PartnerAuthenticationError(TransportError):
    """The partner rejected our credentials."""


class SoapFaultError(TransportError):
    """The partner answered with a SOAP fault or unparseable XML."""


class CircuitOpenError(PartnerConnectionError):
    """The circuit breaker is open for the partner service."""

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"Circuit is open for service '{service}'")


@dataclass(frozen=True)
class FailureSignal:
    """Structured failure handed over by a transport.

    Attributes:
        message: Human-readable failure text.
        category: Explicit category when the transport already knows it
            (an ErrorKind value or an alias such as "soap_fault").
        exception_type: Name of the exception class, when there was one.
        requires_manual_intervention: Force operator attention regardless
            of severity.
    """

    message: str
    category: str | None = None
    exception_type: str | None = None
    requires_manual_intervention: bool = False

    @classmethod
    def from_exception(cls, exc: BaseException) -> FailureSignal:
        """Build a signal from an exception raised by a transport."""
        return cls(message=str(exc) or type(exc).__name__, exception_type=type(exc).__name__)


@dataclass(frozen=True)
class Classification:
    """ErrorRecord fields derived from a failure.

    Severity and can_retry always follow the kind; only
    requires_manual_intervention may be raised by the failure signal.
    """

    kind: ErrorKind
    message: str
    requires_manual_intervention: bool
    exception_type: str | None = None

    @property
    def severity(self) -> Severity:
        return self.kind.severity

    @property
    def can_retry(self) -> bool:
        return self.kind.can_retry

    @property
    def retry_delay_seconds(self) -> int:
        return self.kind.retry_delay_seconds


@dataclass(frozen=True)
class ClassificationRule:
    """One entry of the classifier's ordered rule table.

    Attributes:
        kind: ErrorKind assigned when the rule matches.
        type_names: Substrings matched against the exception class name.
        phrases: Substrings matched against the lowercased failure message.
    """

    kind: ErrorKind
    type_names: tuple[str, ...] = field(default_factory=tuple)
    phrases: tuple[str, ...] = field(default_factory=tuple)


# Explicit categories accepted from transports, besides ErrorKind values
CATEGORY_ALIASES: dict[str, ErrorKind] = {
    "soap_fault": ErrorKind.PROTOCOL_ENCODING,
    "soap fault": ErrorKind.PROTOCOL_ENCODING,
    "soap_xml": ErrorKind.PROTOCOL_ENCODING,
    "xml": ErrorKind.PROTOCOL_ENCODING,
    "auth": ErrorKind.AUTHENTICATION,
    "throttled": ErrorKind.RATE_LIMIT,
    "mapping": ErrorKind.DATA_MAPPING,
    "business": ErrorKind.BUSINESS_LOGIC,
    "config": ErrorKind.CONFIGURATION,
}

# Exception class names, checked before message text
TYPE_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(ErrorKind.PROTOCOL_ENCODING, type_names=("SoapFault", "XmlException", "XMLSyntaxError", "ParseError")),
    ClassificationRule(ErrorKind.AUTHENTICATION, type_names=("Authentication", "Unauthorized")),
    ClassificationRule(ErrorKind.TIMEOUT, type_names=("Timeout",)),
    ClassificationRule(ErrorKind.CONNECTION, type_names=("ConnectionError", "ConnectException", "ConnectError", "CircuitOpen")),
    ClassificationRule(ErrorKind.VALIDATION, type_names=("ValidationError", "ValidationException", "RateValidation")),
    ClassificationRule(ErrorKind.CONFIGURATION, type_names=("Configuration",)),
)

# Message phrases, checked in order; first match wins
PHRASE_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(ErrorKind.AUTHENTICATION, phrases=("authentication", "unauthorized", "forbidden", "invalid credentials")),
    ClassificationRule(ErrorKind.TIMEOUT, phrases=("timeout", "timed out")),
    ClassificationRule(ErrorKind.RATE_LIMIT, phrases=("rate limit", "too many requests", "throttl")),
    ClassificationRule(ErrorKind.VALIDATION, phrases=("validation", "invalid")),
    ClassificationRule(ErrorKind.CONNECTION, phrases=("connection", "unreachable", "network", "dns")),
    ClassificationRule(ErrorKind.CONFIGURATION, phrases=("configuration", "not configured", "missing config")),
    ClassificationRule(ErrorKind.DATA_MAPPING, phrases=("mapping", "unmapped", "no mapping")),
    ClassificationRule(ErrorKind.PROTOCOL_ENCODING, phrases=("soap", "xml", "malformed", "parse error")),
    ClassificationRule(ErrorKind.BUSINESS_LOGIC, phrases=("business rule", "overbook", "not allowed", "conflict")),
)


def _category_kind(category: str) -> ErrorKind | None:
    key = category.strip().lower()
    try:
        return ErrorKind(key)
    except ValueError:
        return CATEGORY_ALIASES.get(key)


class ErrorClassifier:
    """Map raw failures onto the ErrorKind taxonomy.

    Matching precedence:
    1. Explicit structured category from the transport
    2. Exception type (built-in TimeoutError/ConnectionError ancestry, then
       class name substrings)
    3. Case-insensitive phrase table against the failure message
    4. Unknown

    The classifier is pure and holds no state besides its rule tables.
    """

    def __init__(
        self,
        type_rules: tuple[ClassificationRule, ...] = TYPE_RULES,
        phrase_rules: tuple[ClassificationRule, ...] = PHRASE_RULES,
    ) -> None:
        self._type_rules = type_rules
        self._phrase_rules = phrase_rules

    def classify(self, failure: BaseException | FailureSignal | str) -> Classification:
        """Classify a failure.

        Args:
            failure: Exception, structured signal or plain message.

        Returns:
            Classification with kind, message and manual-intervention flag.
        """
        if isinstance(failure, BaseException):
            signal = FailureSignal.from_exception(failure)
            kind = self._kind_from_exception(failure)
        else:
            signal = failure if isinstance(failure, FailureSignal) else FailureSignal(message=failure)
            kind = None

        if signal.category:
            kind = _category_kind(signal.category) or kind
        if kind is None and signal.exception_type:
            kind = self._kind_from_type_name(signal.exception_type)
        if kind is None:
            kind = self._kind_from_message(signal.message)

        return Classification(
            kind=kind,
            message=signal.message,
            requires_manual_intervention=(
                kind.severity is Severity.CRITICAL or signal.requires_manual_intervention
            ),
            exception_type=signal.exception_type,
        )

    def _kind_from_exception(self, exc: BaseException) -> ErrorKind | None:
        if isinstance(exc, CircuitOpenError):
            return ErrorKind.CONNECTION
        if isinstance(exc, (TimeoutError, PartnerTimeoutError)):
            return ErrorKind.TIMEOUT
        if isinstance(exc, PartnerAuthenticationError):
            return ErrorKind.AUTHENTICATION
        if isinstance(exc, SoapFaultError):
            return ErrorKind.PROTOCOL_ENCODING
        if isinstance(exc, RateValidationError):
            return ErrorKind.VALIDATION
        if isinstance(exc, (ConnectionError, PartnerConnectionError)):
            return ErrorKind.CONNECTION
        for klass in type(exc).__mro__:
            kind = self._kind_from_type_name(klass.__name__)
            if kind is not None:
                return kind
        return None

    def _kind_from_type_name(self, type_name: str) -> ErrorKind | None:
        for rule in self._type_rules:
            if any(fragment in type_name for fragment in rule.type_names):
                return rule.kind
        return None

    def _kind_from_message(self, message: str) -> ErrorKind:
        text = message.lower()
        for rule in self._phrase_rules:
            if any(phrase in text for phrase in rule.phrases):
                return rule.kind
        return ErrorKind.UNKNOWN
