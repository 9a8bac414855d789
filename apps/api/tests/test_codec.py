import json
import re
import uuid

import pytest

from call_console.codec import decode, encode, new_envelope
from call_console.errors import MalformedMessage
from call_console.schemas.envelope import (
    AudioStatus,
    CallStartMessage,
    CallStateData,
    CallStateMessage,
    ChannelStatus,
    TranscriptSegment,
    UIInteractionMessage,
    UnknownEnvelope,
)

ISO_MILLIS = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def frame(message_type: str, **extra) -> str:
    return json.dumps(
        {
            "type": message_type,
            "messageId": str(uuid.uuid4()),
            "timestamp": "2026-03-01T10:15:30.250Z",
            **extra,
        }
    )


def test_encode_stamps_message_id_and_millisecond_timestamp():
    envelope = new_envelope("call:state", CallStateData(state="idle"))
    wire = json.loads(encode(envelope))

    assert wire["type"] == "call:state"
    assert uuid.UUID(wire["messageId"]).version == 4
    assert ISO_MILLIS.match(wire["timestamp"])
    assert wire["payload"]["state"] == "idle"
    assert "callId" not in wire["payload"]


def test_encode_uses_camel_case_and_omits_absent_optionals():
    segment = TranscriptSegment(
        speaker="caller", text="Ayuda", timestamp=1000, start_time=2.0, is_final=False
    )
    wire = json.loads(encode(new_envelope("transcript:segment", segment)))["payload"]

    assert set(wire) == {"segmentId", "speaker", "text", "timestamp", "startTime", "isFinal"}


def test_decode_call_start_without_payload():
    envelope = decode(frame("call:start"))

    assert isinstance(envelope, CallStartMessage)
    assert envelope.payload is None


def test_decode_accepts_bytes_frames():
    envelope = decode(frame("call:end").encode("utf-8"))

    assert envelope.type == "call:end"


def test_decode_ui_interaction():
    raw = frame(
        "ui:interaction",
        payload={
            "component": "ControlPanel",
            "action": "start_call_clicked",
            "timestamp": 1767000000000,
            "metadata": {"source": "button"},
        },
    )
    envelope = decode(raw)

    assert isinstance(envelope, UIInteractionMessage)
    assert envelope.payload.component == "ControlPanel"
    assert envelope.payload.metadata == {"source": "button"}


@pytest.mark.parametrize("missing", ["type", "messageId", "timestamp"])
def test_decode_rejects_missing_envelope_fields(missing):
    data = json.loads(frame("call:start"))
    del data[missing]

    with pytest.raises(MalformedMessage):
        decode(json.dumps(data))


def test_decode_rejects_missing_payload_for_payload_bearing_type():
    with pytest.raises(MalformedMessage) as exc_info:
        decode(frame("ui:interaction"))

    assert exc_info.value.message_type == "ui:interaction"


def test_decode_rejects_flat_data_wrapper():
    raw = frame(
        "ui:interaction",
        data={"component": "ControlPanel", "action": "click", "timestamp": 1},
    )

    with pytest.raises(MalformedMessage):
        decode(raw)


def test_decode_rejects_payload_inconsistent_with_type():
    raw = frame("language:detected", payload={"speaker": "caller", "confidence": 3})

    with pytest.raises(MalformedMessage):
        decode(raw)


def test_decode_rejects_payload_on_call_start():
    with pytest.raises(MalformedMessage):
        decode(frame("call:start", payload={"force": True}))


@pytest.mark.parametrize(
    "payload",
    [
        {"state": "active", "timestamp": 1},
        {"state": "ended", "timestamp": 1},
        {"state": "idle", "timestamp": 1, "callId": "abc"},
        {"state": "connecting", "timestamp": 1, "callId": "abc"},
    ],
)
def test_decode_enforces_call_id_presence_by_state(payload):
    with pytest.raises(MalformedMessage):
        decode(frame("call:state", payload=payload))


def test_decode_active_state_with_call_id():
    envelope = decode(frame("call:state", payload={"state": "active", "timestamp": 5, "callId": "c-1"}))

    assert isinstance(envelope, CallStateMessage)
    assert envelope.payload.call_id == "c-1"


def test_decode_rejects_end_time_on_interim_segment():
    payload = {
        "segmentId": "s-1",
        "speaker": "caller",
        "text": "Ayuda",
        "timestamp": 1,
        "startTime": 2.0,
        "endTime": 2.5,
        "isFinal": False,
    }

    with pytest.raises(MalformedMessage):
        decode(frame("transcript:segment", payload=payload))


def test_decode_rejects_end_time_before_start_time():
    payload = {
        "segmentId": "s-1",
        "speaker": "caller",
        "text": "Ayuda",
        "timestamp": 1,
        "startTime": 2.0,
        "endTime": 1.0,
        "isFinal": True,
    }

    with pytest.raises(MalformedMessage):
        decode(frame("transcript:segment", payload=payload))


def test_unknown_type_is_accepted_with_opaque_payload():
    envelope = decode(frame("ui:heartbeat", payload={"anything": [1, 2, 3]}))

    assert isinstance(envelope, UnknownEnvelope)
    assert envelope.type == "ui:heartbeat"
    assert envelope.payload == {"anything": [1, 2, 3]}


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        "42",
        json.dumps({"type": "", "messageId": "x", "timestamp": "2026-03-01T10:15:30.250Z"}),
        json.dumps({"type": "call:start", "messageId": "x", "timestamp": "yesterday"}),
        b"\xff\xfe",
    ],
)
def test_decode_never_raises_anything_but_malformed_message(raw):
    with pytest.raises(MalformedMessage):
        decode(raw)


def test_level_is_dropped_for_non_streaming_channel():
    status = AudioStatus(
        caller=ChannelStatus(status="muted", level=40),
        telecommunicator=ChannelStatus(status="streaming", level=80),
    )
    wire = json.loads(encode(new_envelope("audio:status", status)))["payload"]

    assert wire["caller"] == {"status": "muted"}
    assert wire["telecommunicator"] == {"status": "streaming", "level": 80}
