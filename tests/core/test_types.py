"""Tests for shared enums and fingerprints."""

from __future__ import annotations

import pytest

from hotelsync.core.hashing import Sha256Codec, compute_fingerprint
from hotelsync.core.types import ErrorKind, MessageKind, ProcessingState, RateOperation, Severity


class TestErrorKind:
    """Tests for the failure taxonomy."""

    @pytest.mark.parametrize(
        "kind",
        [ErrorKind.CONNECTION, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.UNKNOWN],
    )
    def test_retryable_kinds(self, kind: ErrorKind) -> None:
        """Should retry only transient kinds."""
        assert kind.can_retry is True

    @pytest.mark.parametrize(
        "kind",
        [
            ErrorKind.AUTHENTICATION,
            ErrorKind.VALIDATION,
            ErrorKind.PROTOCOL_ENCODING,
            ErrorKind.BUSINESS_LOGIC,
            ErrorKind.CONFIGURATION,
            ErrorKind.DATA_MAPPING,
        ],
    )
    def test_non_retryable_kinds(self, kind: ErrorKind) -> None:
        """Should not retry kinds that need a human or a data fix."""
        assert kind.can_retry is False
        assert kind.retry_delay_seconds == 0

    def test_retry_delays(self) -> None:
        """Should recommend kind specific delays."""
        assert ErrorKind.CONNECTION.retry_delay_seconds == 30
        assert ErrorKind.TIMEOUT.retry_delay_seconds == 60
        assert ErrorKind.RATE_LIMIT.retry_delay_seconds == 300
        assert ErrorKind.UNKNOWN.retry_delay_seconds == 120

    def test_severities(self) -> None:
        """Should map every kind to its severity."""
        assert ErrorKind.AUTHENTICATION.severity is Severity.CRITICAL
        assert ErrorKind.CONFIGURATION.severity is Severity.CRITICAL
        assert ErrorKind.CONNECTION.severity is Severity.HIGH
        assert ErrorKind.BUSINESS_LOGIC.severity is Severity.HIGH
        assert ErrorKind.VALIDATION.severity is Severity.MEDIUM
        assert ErrorKind.TIMEOUT.severity is Severity.LOW
        assert ErrorKind.UNKNOWN.severity is Severity.MEDIUM

    def test_every_kind_has_description(self) -> None:
        """Should describe every kind."""
        assert all(kind.description for kind in ErrorKind)


class TestMessageKind:
    """Tests for message kind defaults."""

    def test_reservation_has_highest_priority(self) -> None:
        """Should order reservations first."""
        assert min(MessageKind, key=lambda kind: kind.priority) is MessageKind.RESERVATION

    def test_partner_message_names(self) -> None:
        """Should name the partner request of each kind."""
        assert MessageKind.INVENTORY.partner_message_name == "OTA_HotelInvCountNotifRQ"
        assert MessageKind.RATES.partner_message_name == "OTA_HotelRateNotifRQ"

    def test_defaults(self) -> None:
        """Should expose timeout and batch size defaults."""
        assert MessageKind.GROUP_BLOCK.default_timeout_seconds == 180
        assert MessageKind.RESTRICTIONS.default_batch_size == 200


class TestRateOperation:
    """Tests for rate operations."""

    def test_linked_support(self) -> None:
        """Should support linked rates for update, create and delta only."""
        supported = {op for op in RateOperation if op.supports_linked_rates}
        assert supported == {RateOperation.UPDATE, RateOperation.CREATE, RateOperation.DELTA}

    def test_creation(self) -> None:
        """Should treat only create as a creation operation."""
        assert RateOperation.CREATE.is_creation is True
        assert RateOperation.UPDATE.is_creation is False


class TestProcessingState:
    def test_terminal_states(self) -> None:
        """Should treat processed and failed as terminal."""
        assert {s for s in ProcessingState if s.is_terminal} == {
            ProcessingState.PROCESSED,
            ProcessingState.FAILED,
        }


class TestFingerprint:
    """Tests for content fingerprints."""

    def test_sha256_hex(self) -> None:
        """Should return the SHA-256 hex digest."""
        assert compute_fingerprint("") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_text_and_bytes_agree(self) -> None:
        """Should encode text as UTF-8."""
        assert compute_fingerprint("é<Inv/>") == compute_fingerprint("é<Inv/>".encode())

    def test_codec(self) -> None:
        """Should fingerprint through the codec."""
        assert Sha256Codec().fingerprint("<a/>") == compute_fingerprint("<a/>")
        assert Sha256Codec().fingerprint("<a/>") != Sha256Codec().fingerprint("<b/>")
