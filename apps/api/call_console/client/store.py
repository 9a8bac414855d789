from collections import deque
from dataclasses import dataclass, field
from typing import Literal

import structlog

from call_console.client.reconciler import TranscriptLog
from call_console.schemas.envelope import (
    AudioStatus,
    AudioStatusMessage,
    CallStateMessage,
    CallStateName,
    ConnectionAckMessage,
    EnvelopeBase,
    InteractionAckMessage,
    LanguageDetectedMessage,
    LanguageDetection,
    TranscriptSegmentMessage,
)

logger = structlog.get_logger()

NotificationKind = Literal["info", "success", "warning", "error"]
MAX_NOTIFICATIONS = 20


@dataclass(frozen=True)
class Notification:
    message: str
    kind: NotificationKind


@dataclass
class CallStore:
    connected: bool = False
    session_id: str | None = None
    call_state: CallStateName = "idle"
    call_id: str | None = None
    call_start_time: int | None = None
    caller_language: LanguageDetection | None = None
    telecommunicator_language: LanguageDetection | None = None
    transcript: TranscriptLog = field(default_factory=TranscriptLog)
    audio_status: AudioStatus | None = None
    last_interaction_ack: str | None = None
    notifications: deque[Notification] = field(
        default_factory=lambda: deque(maxlen=MAX_NOTIFICATIONS)
    )

    def notify(self, message: str, kind: NotificationKind = "info") -> None:
        self.notifications.append(Notification(message, kind))

    def reset(self) -> None:
        """Discard all session and call state; notifications survive."""
        self.connected = False
        self.session_id = None
        self.call_state = "idle"
        self.call_id = None
        self.call_start_time = None
        self.caller_language = None
        self.telecommunicator_language = None
        self.transcript = TranscriptLog()
        self.audio_status = None
        self.last_interaction_ack = None

    def apply(self, envelope: EnvelopeBase) -> bool:
        """Fold one server envelope into the store; returns False when it was dropped."""
        if isinstance(envelope, ConnectionAckMessage):
            self.session_id = envelope.payload.session_id
            return True

        if self.session_id is None:
            # Nothing is trusted until the connection has been acknowledged.
            logger.debug("client_envelope_before_ack", event_type=envelope.type)
            return False

        if isinstance(envelope, CallStateMessage):
            self._set_call_state(envelope)
        elif isinstance(envelope, LanguageDetectedMessage):
            if envelope.payload.speaker == "caller":
                self.caller_language = envelope.payload
            else:
                self.telecommunicator_language = envelope.payload
        elif isinstance(envelope, TranscriptSegmentMessage):
            self.transcript.apply(envelope.payload)
        elif isinstance(envelope, AudioStatusMessage):
            self.audio_status = envelope.payload
        elif isinstance(envelope, InteractionAckMessage):
            self.last_interaction_ack = envelope.payload.interaction_id
        else:
            logger.debug("client_envelope_ignored", event_type=envelope.type)
            return False
        return True

    def _set_call_state(self, envelope: CallStateMessage) -> None:
        data = envelope.payload
        self.call_state = data.state
        self.call_id = data.call_id
        if data.state == "connecting":
            self.transcript = TranscriptLog()
            self.caller_language = None
            self.telecommunicator_language = None
            self.audio_status = None
            self.call_start_time = None
        elif data.state == "active":
            self.call_start_time = data.timestamp
        else:
            self.call_start_time = None
