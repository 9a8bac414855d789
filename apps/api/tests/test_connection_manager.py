import pytest

from call_console.codec import encode, new_envelope
from call_console.services.connection_manager import ConnectionManager
from conftest import wait_until


class FlakyWebSocket:
    """Accepts frames until ``fail`` is set, then behaves like a dead socket."""

    def __init__(self) -> None:
        self.frames: list[str] = []
        self.fail = False

    async def accept(self) -> None:
        return None

    async def send_text(self, frame: str) -> None:
        if self.fail:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.frames.append(frame)


@pytest.mark.asyncio
async def test_broken_connection_no_longer_counts_as_active_call(fake_sink, fast_timings):
    manager = ConnectionManager(fake_sink, timings=fast_timings)
    websocket = FlakyWebSocket()
    connection = await manager.connect(websocket)

    manager.dispatch(connection, encode(new_envelope("call:start")))
    await wait_until(lambda: connection.session.state == "active")
    assert manager.active_calls == 1

    websocket.fail = True
    # The next recurring audio update hits the dead socket.
    await wait_until(lambda: connection.broken)

    assert connection.session.closed
    assert manager.session_count == 1
    assert manager.active_calls == 0

    await manager.disconnect(websocket)
    assert manager.session_count == 0
    assert [event for _, event, _ in fake_sink.events] == [
        "connection",
        "call:start",
        "disconnection",
    ]
