"""Single-message dispatch through the orchestrator.

MessageDispatcher runs the whole producer control flow for one serialized
message: fingerprint, begin_dispatch, circuit breaker check, transport send
and outcome report. Transports and codecs are injected; the XML grammar and
the partner session live behind them.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from hotelsync.core.config import EngineConfig
from hotelsync.core.hashing import Sha256Codec
from hotelsync.core.types import MessageKind
from hotelsync.engine.circuit import CircuitBreaker
from hotelsync.engine.errors import CircuitOpenError, FailureSignal, KindDisabledError
from hotelsync.engine.lane import LaneSnapshot
from hotelsync.engine.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    """What the partner answered.

    Attributes:
        success: Whether the partner accepted the message.
        raw: Raw response body, when any.
        error_category: Structured error category reported by the partner.
        error_message: Error text reported by the partner.
    """

    success: bool
    raw: str | None = None
    error_category: str | None = None
    error_message: str | None = None

    def failure_signal(self) -> FailureSignal:
        return FailureSignal(
            message=self.error_message or "Partner rejected the message",
            category=self.error_category,
        )


class Transport(Protocol):
    """Outbound partner transport."""

    def send(self, payload: str, timeout: float) -> TransportResponse:
        """Send a serialized message.

        Raises:
            Exception: Any transport failure; it is classified by the caller.
        """
        ...


class Codec(Protocol):
    """Content fingerprinting of serialized messages."""

    def fingerprint(self, payload: str) -> str: ...


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of MessageDispatcher.dispatch."""

    message_id: str
    sent: bool
    success: bool
    is_duplicate: bool
    first_message_id: str | None
    lane: LaneSnapshot
    response: TransportResponse | None = None
    error: str | None = None


class MessageDispatcher:
    """Send one message and keep the orchestrator informed."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        transport: Transport,
        codec: Codec | None = None,
        breaker: CircuitBreaker | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._transport = transport
        self._codec = codec or Sha256Codec()
        self._config = config or orchestrator.config
        self._breaker = breaker or CircuitBreaker(
            threshold=self._config.breaker.threshold,
            reset_timeout=self._config.breaker.reset_timeout_seconds,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def dispatch(
        self,
        property_id: str,
        kind: MessageKind,
        payload: str,
        message_id: str | None = None,
        batch_id: str | None = None,
        parent_message_id: str | None = None,
        records: int = 1,
    ) -> DispatchResult:
        """Dispatch a serialized message.

        Args:
            property_id: Property the message belongs to.
            kind: Message kind.
            payload: Serialized message.
            message_id: MessageID (a UUID4 string when omitted).
            batch_id: Batch the message belongs to.
            parent_message_id: MessageID this message retries or answers.
            records: Business records carried by the message.

        Returns:
            DispatchResult describing what happened.

        Raises:
            KindDisabledError: If the message kind is disabled.
        """
        if not self._config.is_enabled(kind):
            raise KindDisabledError(kind)

        message_id = message_id or str(uuid.uuid4())
        fingerprint = self._codec.fingerprint(payload)
        decision = self._orchestrator.begin_dispatch(
            property_id,
            kind,
            fingerprint,
            message_id,
            parent_message_id=parent_message_id,
            batch_id=batch_id,
            records=records,
            message_size=len(payload.encode("utf-8")),
        )

        def finish(
            success: bool,
            failure: BaseException | FailureSignal | None = None,
            response: TransportResponse | None = None,
            sent: bool = True,
        ) -> DispatchResult:
            lane = self._orchestrator.report_outcome(property_id, kind, message_id, success, failure)
            error = None
            if failure is not None:
                error = failure.message if isinstance(failure, FailureSignal) else str(failure)
            return DispatchResult(
                message_id=message_id,
                sent=sent,
                success=success,
                is_duplicate=decision.is_duplicate,
                first_message_id=decision.first_message_id,
                lane=lane,
                response=response,
                error=error,
            )

        if not self._breaker.allow_request():
            logger.warning("Circuit open; %s message %s not sent", kind.value, message_id)
            return finish(False, CircuitOpenError(self._breaker.service), sent=False)

        timeout = self._config.timeout_for(kind)
        self._orchestrator.mark_sent(message_id)
        try:
            response = self._transport.send(payload, timeout=timeout)
        except Exception as e:
            self._breaker.record_failure()
            logger.warning("Transport failed for %s message %s: %s", kind.value, message_id, e)
            return finish(False, e)

        if response.success:
            self._breaker.record_success()
            return finish(True, response=response)

        # The partner answered, so the connection itself is healthy
        self._breaker.record_success()
        return finish(False, response.failure_signal(), response=response)
