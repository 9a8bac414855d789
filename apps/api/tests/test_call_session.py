import asyncio
import random

import pytest

from call_console.errors import DuplicateCallStart, SpuriousCallEnd
from call_console.services.call_session import CallSession
from conftest import wait_until


def make_session(collector, timings, sink=None) -> CallSession:
    return CallSession(
        "session-1", collector, timings=timings, sink=sink, rng=random.Random(1)
    )


@pytest.mark.asyncio
async def test_start_emits_connecting_then_active_with_call_id(collector, fast_timings):
    session = make_session(collector, fast_timings)

    assert session.start_call() is True
    assert collector.states() == ["connecting"]
    assert collector.of_type("call:state")[0].payload.call_id is None

    await wait_until(lambda: "active" in collector.states())
    active = collector.of_type("call:state")[-1]
    assert active.payload.call_id
    assert session.call_id == active.payload.call_id
    session.close()


@pytest.mark.asyncio
async def test_full_lifecycle_keeps_call_id_through_ended(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()
    await wait_until(lambda: session.state == "active")

    assert session.end_call() is True
    await wait_until(lambda: session.state == "idle")

    states = collector.of_type("call:state")
    assert [s.payload.state for s in states] == ["connecting", "active", "ended", "idle"]
    assert states[2].payload.call_id == states[1].payload.call_id
    assert states[0].payload.call_id is None
    assert states[3].payload.call_id is None
    session.close()


@pytest.mark.asyncio
async def test_end_before_start_is_a_no_op(collector, fast_timings):
    session = make_session(collector, fast_timings)

    with pytest.raises(SpuriousCallEnd):
        session.end_call()
    assert collector.envelopes == []
    assert session.timers.pending == 0
    assert session.state == "idle"


@pytest.mark.asyncio
async def test_start_while_active_is_a_no_op(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()
    await wait_until(lambda: session.state == "active")
    call_id = session.call_id
    pending = session.timers.pending

    for _ in range(2):
        with pytest.raises(DuplicateCallStart) as excinfo:
            session.start_call()
        assert excinfo.value.call_id == call_id

    assert session.state == "active"
    assert session.call_id == call_id
    assert session.timers.pending <= pending
    assert collector.states() == ["connecting", "active"]
    session.close()


@pytest.mark.asyncio
async def test_start_while_connecting_is_a_no_op(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()

    with pytest.raises(DuplicateCallStart):
        session.start_call()
    await wait_until(lambda: session.state == "active")
    assert collector.states() == ["connecting", "active"]
    session.close()


@pytest.mark.asyncio
async def test_active_call_plays_detections_audio_and_transcript(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()

    await wait_until(lambda: len(collector.of_type("transcript:segment")) == len(session.script))

    detections = {e.payload.speaker: e.payload for e in collector.of_type("language:detected")}
    assert detections["caller"].language_code == "es"
    assert detections["telecommunicator"].language_code == "en"

    audio = collector.of_type("audio:status")
    assert audio[0].payload.caller.level == 75
    assert audio[0].payload.telecommunicator.level == 80
    assert len(audio) > 1
    assert all(60 <= a.payload.caller.level <= 89 for a in audio[1:])

    segments = [e.payload for e in collector.of_type("transcript:segment")]
    starts = [s.start_time for s in segments]
    assert starts == sorted(starts)
    assert segments[0].timestamp == session.activated_at_ms + 500
    assert len({s.segment_id for s in segments}) == len(segments)
    session.close()


@pytest.mark.asyncio
async def test_nothing_is_emitted_for_the_call_after_ended(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()
    await wait_until(lambda: len(collector.of_type("transcript:segment")) >= 2)

    session.end_call()
    # Longer than the whole script at this scale.
    await asyncio.sleep(0.25)

    ended_at = collector.index_of_state("ended")
    after = [e.type for e in collector.envelopes[ended_at + 1 :]]
    assert after == ["call:state"]
    assert collector.states()[-1] == "idle"
    assert session.timers.pending == 0


@pytest.mark.asyncio
async def test_end_during_connecting_cancels_activation(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()
    session.end_call()

    await wait_until(lambda: session.state == "idle")
    await asyncio.sleep(0.03)

    assert collector.states() == ["connecting", "ended", "idle"]
    assert collector.of_type("call:state")[1].payload.call_id
    assert collector.of_type("transcript:segment") == []


@pytest.mark.asyncio
async def test_end_while_ended_is_a_no_op(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()
    await wait_until(lambda: session.state == "active")
    session.end_call()

    with pytest.raises(SpuriousCallEnd):
        session.end_call()
    with pytest.raises(DuplicateCallStart) as excinfo:
        session.start_call()
    assert excinfo.value.state == "ended"
    await wait_until(lambda: session.state == "idle")
    assert collector.states() == ["connecting", "active", "ended", "idle"]


@pytest.mark.asyncio
async def test_sequential_calls_get_distinct_call_ids(collector, fast_timings):
    session = make_session(collector, fast_timings)
    call_ids = []
    for _ in range(3):
        session.start_call()
        await wait_until(lambda: session.state == "active")
        call_ids.append(session.call_id)
        session.end_call()
        await wait_until(lambda: session.state == "idle")

    assert len(set(call_ids)) == 3
    session.close()


@pytest.mark.asyncio
async def test_close_cancels_every_timer(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()
    await wait_until(lambda: session.state == "active")

    session.close()
    emitted = len(collector.envelopes)
    await asyncio.sleep(0.2)

    assert len(collector.envelopes) == emitted
    assert session.timers.pending == 0
    assert session.start_call() is False


@pytest.mark.asyncio
async def test_close_during_ended_skips_return_to_idle(collector, fast_timings):
    session = make_session(collector, fast_timings)
    session.start_call()
    await wait_until(lambda: session.state == "active")
    session.end_call()
    session.close()

    await asyncio.sleep(0.06)

    assert collector.states()[-1] == "ended"


@pytest.mark.asyncio
async def test_session_events_are_recorded(collector, fast_timings, fake_sink):
    session = make_session(collector, fast_timings, sink=fake_sink)
    session.start_call()
    await wait_until(lambda: session.state == "active")
    session.end_call()
    session.close()

    assert [event for _, event, _ in fake_sink.events] == ["call:start", "call:end"]
    assert fake_sink.events[1][2] == {"callId": collector.of_type("call:state")[1].payload.call_id}
