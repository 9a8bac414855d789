import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel

Speaker = Literal["caller", "telecommunicator"]
CallStateName = Literal["idle", "connecting", "active", "ended"]
ChannelState = Literal["streaming", "muted", "disconnected"]

CALL_ID_STATES = frozenset({"active", "ended"})


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def format_timestamp(value: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision, e.g. ``2026-01-01T12:00:00.123Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmptyPayload(WireModel):
    model_config = ConfigDict(extra="forbid")


class ConnectionAck(WireModel):
    session_id: str = Field(min_length=1)


class CallStateData(WireModel):
    state: CallStateName
    timestamp: int = Field(default_factory=now_ms)
    call_id: str | None = None

    @model_validator(mode="after")
    def check_call_id(self) -> "CallStateData":
        if self.state in CALL_ID_STATES and not self.call_id:
            raise ValueError(f"callId is required for state {self.state!r}")
        if self.state not in CALL_ID_STATES and self.call_id is not None:
            raise ValueError(f"callId is not allowed for state {self.state!r}")
        return self


class LanguageDetection(WireModel):
    speaker: Speaker
    language_code: str = Field(min_length=1)
    language_name: str
    confidence: float = Field(ge=0.0, le=1.0)


class TranscriptSegment(WireModel):
    segment_id: str = Field(default_factory=new_id, min_length=1)
    speaker: Speaker
    text: str
    timestamp: int
    start_time: float = Field(ge=0.0)
    end_time: float | None = None
    is_final: bool

    @model_validator(mode="after")
    def check_times(self) -> "TranscriptSegment":
        if self.end_time is None:
            return self
        if not self.is_final:
            raise ValueError("endTime is only set on final segments")
        if self.end_time < self.start_time:
            raise ValueError("endTime must not precede startTime")
        return self


class ChannelStatus(WireModel):
    status: ChannelState
    level: int | None = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def drop_level_unless_streaming(self) -> "ChannelStatus":
        if self.status != "streaming":
            self.level = None
        return self


class AudioStatus(WireModel):
    caller: ChannelStatus
    telecommunicator: ChannelStatus


class UIInteraction(WireModel):
    component: str = Field(min_length=1)
    action: str = Field(min_length=1)
    timestamp: int
    metadata: dict[str, Any] | None = None


class InteractionAck(WireModel):
    interaction_id: str = Field(default_factory=new_id)


class EnvelopeBase(WireModel):
    message_id: str = Field(default_factory=new_id, min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)


# client -> server


class CallStartMessage(EnvelopeBase):
    type: Literal["call:start"] = "call:start"
    payload: EmptyPayload | None = None


class CallEndMessage(EnvelopeBase):
    type: Literal["call:end"] = "call:end"
    payload: EmptyPayload | None = None


class UIInteractionMessage(EnvelopeBase):
    type: Literal["ui:interaction"] = "ui:interaction"
    payload: UIInteraction


# server -> client


class ConnectionAckMessage(EnvelopeBase):
    type: Literal["connection:ack"] = "connection:ack"
    payload: ConnectionAck


class CallStateMessage(EnvelopeBase):
    type: Literal["call:state"] = "call:state"
    payload: CallStateData


class LanguageDetectedMessage(EnvelopeBase):
    type: Literal["language:detected"] = "language:detected"
    payload: LanguageDetection


class TranscriptSegmentMessage(EnvelopeBase):
    type: Literal["transcript:segment"] = "transcript:segment"
    payload: TranscriptSegment


class AudioStatusMessage(EnvelopeBase):
    type: Literal["audio:status"] = "audio:status"
    payload: AudioStatus


class InteractionAckMessage(EnvelopeBase):
    type: Literal["ui:interaction:ack"] = "ui:interaction:ack"
    payload: InteractionAck


class UnknownEnvelope(EnvelopeBase):
    """Envelope with a type this peer does not know; the payload is kept opaque."""

    type: str = Field(min_length=1)
    payload: Any = None


KnownMessage = Annotated[
    Union[
        CallStartMessage,
        CallEndMessage,
        UIInteractionMessage,
        ConnectionAckMessage,
        CallStateMessage,
        LanguageDetectedMessage,
        TranscriptSegmentMessage,
        AudioStatusMessage,
        InteractionAckMessage,
    ],
    Field(discriminator="type"),
]

Envelope = Union[KnownMessage, UnknownEnvelope]

MESSAGE_TYPES: dict[str, type[EnvelopeBase]] = {
    "call:start": CallStartMessage,
    "call:end": CallEndMessage,
    "ui:interaction": UIInteractionMessage,
    "connection:ack": ConnectionAckMessage,
    "call:state": CallStateMessage,
    "language:detected": LanguageDetectedMessage,
    "transcript:segment": TranscriptSegmentMessage,
    "audio:status": AudioStatusMessage,
    "ui:interaction:ack": InteractionAckMessage,
}

PAYLOAD_FREE_TYPES = frozenset({"call:start", "call:end"})
