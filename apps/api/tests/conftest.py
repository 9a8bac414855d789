import asyncio
from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from call_console.config import settings
from call_console.main import app
from call_console.schemas.envelope import EnvelopeBase
from call_console.services.call_session import SessionTimings

# 1/100 of real time: activation after 10ms, whole script inside 140ms.
FAST_SCALE = 0.01


class Collector:
    """Stands in for a connection: records every envelope a session emits."""

    def __init__(self) -> None:
        self.envelopes: list[EnvelopeBase] = []

    def __call__(self, envelope: EnvelopeBase) -> None:
        self.envelopes.append(envelope)

    def of_type(self, message_type: str) -> list[EnvelopeBase]:
        return [envelope for envelope in self.envelopes if envelope.type == message_type]

    def states(self) -> list[str]:
        return [envelope.payload.state for envelope in self.of_type("call:state")]

    def index_of_state(self, state: str) -> int:
        for index, envelope in enumerate(self.envelopes):
            if envelope.type == "call:state" and envelope.payload.state == state:
                return index
        raise LookupError(state)


class FakeSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict | None]] = []
        self.interactions: list[tuple[str, object]] = []

    def record_event(self, session_id: str, event_type: str, data: dict | None = None) -> None:
        self.events.append((session_id, event_type, data))

    def record_interaction(self, session_id: str, interaction) -> None:
        self.interactions.append((session_id, interaction))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.002)


@pytest.fixture
def collector() -> Collector:
    return Collector()


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def fast_timings() -> SessionTimings:
    return SessionTimings(time_scale=FAST_SCALE)


@pytest.fixture
def interaction_log(tmp_path):
    return tmp_path / "logs" / "interactions.jsonl"


@pytest.fixture
def client(monkeypatch, interaction_log):
    monkeypatch.setattr(settings, "time_scale", FAST_SCALE)
    monkeypatch.setattr(settings, "interaction_log_path", str(interaction_log))
    monkeypatch.setattr(settings, "script_path", None)
    with TestClient(app) as test_client:
        yield test_client
