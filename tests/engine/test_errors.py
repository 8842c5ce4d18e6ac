"""Tests for failure classification."""

from __future__ import annotations

import pytest

from hotelsync.core.types import ErrorKind, LaneState, Severity
from hotelsync.engine.errors import (
    CircuitOpenError,
    ErrorClassifier,
    FailureSignal,
    InvalidTransitionError,
    PartnerAuthenticationError,
    PartnerTimeoutError,
    RateValidationError,
    SoapFaultError,
)


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


class TestClassifierPrecedence:
    """Tests for the order in which failure evidence is considered."""

    def test_explicit_category_wins_over_message(self, classifier: ErrorClassifier) -> None:
        """Should trust the transport's category over the message text."""
        result = classifier.classify(FailureSignal("Connection reset", category="soap_fault"))
        assert result.kind is ErrorKind.PROTOCOL_ENCODING

    def test_category_accepts_kind_values(self, classifier: ErrorClassifier) -> None:
        """Should accept ErrorKind values as categories."""
        result = classifier.classify(FailureSignal("boom", category="Rate_Limit"))
        assert result.kind is ErrorKind.RATE_LIMIT

    def test_unknown_category_falls_through(self, classifier: ErrorClassifier) -> None:
        """Should ignore unrecognised categories."""
        result = classifier.classify(FailureSignal("request timed out", category="weird"))
        assert result.kind is ErrorKind.TIMEOUT

    def test_exception_type_wins_over_message(self, classifier: ErrorClassifier) -> None:
        """Should classify by exception type before reading the message."""
        result = classifier.classify(PartnerTimeoutError("connection slow"))
        assert result.kind is ErrorKind.TIMEOUT

    def test_type_name_from_signal(self, classifier: ErrorClassifier) -> None:
        """Should match exception type names carried by a signal."""
        result = classifier.classify(FailureSignal("boom", exception_type="SoapFaultException"))
        assert result.kind is ErrorKind.PROTOCOL_ENCODING

    def test_builtin_exceptions(self, classifier: ErrorClassifier) -> None:
        """Should map built-in timeout and connection errors."""
        assert classifier.classify(TimeoutError()).kind is ErrorKind.TIMEOUT
        assert classifier.classify(ConnectionRefusedError("nope")).kind is ErrorKind.CONNECTION

    def test_engine_exceptions(self, classifier: ErrorClassifier) -> None:
        """Should map transport and engine exceptions."""
        assert classifier.classify(CircuitOpenError("partner")).kind is ErrorKind.CONNECTION
        assert classifier.classify(PartnerAuthenticationError("401")).kind is ErrorKind.AUTHENTICATION
        assert classifier.classify(SoapFaultError("fault")).kind is ErrorKind.PROTOCOL_ENCODING
        assert classifier.classify(RateValidationError("bad")).kind is ErrorKind.VALIDATION

    def test_unmatched_exception_uses_message(self, classifier: ErrorClassifier) -> None:
        """Should fall back to the message when the type says nothing."""
        assert classifier.classify(ValueError("network unreachable")).kind is ErrorKind.CONNECTION


class TestPhraseTable:
    """Tests for message phrase matching."""

    @pytest.mark.parametrize(
        ("message", "kind"),
        [
            ("Invalid credentials supplied", ErrorKind.AUTHENTICATION),
            ("Request timed out after 60s", ErrorKind.TIMEOUT),
            ("Too Many Requests", ErrorKind.RATE_LIMIT),
            ("Invalid room type code", ErrorKind.VALIDATION),
            ("DNS lookup failed", ErrorKind.CONNECTION),
            ("Endpoint not configured", ErrorKind.CONFIGURATION),
            ("No mapping for rate plan BAR", ErrorKind.DATA_MAPPING),
            ("Malformed envelope", ErrorKind.PROTOCOL_ENCODING),
            ("Would overbook room", ErrorKind.BUSINESS_LOGIC),
            ("Something odd happened", ErrorKind.UNKNOWN),
        ],
    )
    def test_phrases(self, classifier: ErrorClassifier, message: str, kind: ErrorKind) -> None:
        """Should match phrases case-insensitively, first rule first."""
        assert classifier.classify(message).kind is kind


class TestClassificationFields:
    """Tests for derived classification fields."""

    def test_fields_follow_kind(self, classifier: ErrorClassifier) -> None:
        """Should derive severity, retry flag and delay from the kind."""
        result = classifier.classify("Request timed out")
        assert result.severity is Severity.LOW
        assert result.can_retry is True
        assert result.retry_delay_seconds == 60
        assert result.requires_manual_intervention is False

    def test_critical_requires_manual_intervention(self, classifier: ErrorClassifier) -> None:
        """Should flag critical kinds for operator attention."""
        result = classifier.classify("401 Unauthorized")
        assert result.kind is ErrorKind.AUTHENTICATION
        assert result.requires_manual_intervention is True

    def test_signal_can_force_manual_intervention(self, classifier: ErrorClassifier) -> None:
        """Should honour the signal's manual-intervention flag."""
        result = classifier.classify(FailureSignal("timeout", requires_manual_intervention=True))
        assert result.requires_manual_intervention is True
        assert result.can_retry is True

    def test_empty_exception_message(self, classifier: ErrorClassifier) -> None:
        """Should use the exception class name when the message is empty."""
        result = classifier.classify(TimeoutError())
        assert result.message == "TimeoutError"
        assert result.exception_type == "TimeoutError"


class TestExceptions:
    def test_invalid_transition_message(self) -> None:
        """Should name the operation and state."""
        exc = InvalidTransitionError("reset", LaneState.RUNNING)
        assert str(exc) == "Cannot reset a lane in state 'running'"
        assert exc.state is LaneState.RUNNING
