"""
Server-side connection registry and message routing.
"""

import asyncio

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from call_console.codec import decode, encode, new_envelope
from call_console.errors import (
    DuplicateCallStart,
    MalformedMessage,
    SpuriousCallEnd,
    TransportError,
)
from call_console.schemas.envelope import (
    CallEndMessage,
    CallStartMessage,
    CallStateData,
    ConnectionAck,
    EnvelopeBase,
    InteractionAck,
    UIInteractionMessage,
    UnknownEnvelope,
    new_id,
)
from call_console.services.call_session import CallSession, SessionTimings
from call_console.services.interaction_sink import InteractionSink
from call_console.services.playback import FIRE_EMERGENCY, ConversationScript

logger = structlog.get_logger()


class SessionConnection:
    """One accepted websocket plus its call session and ordered outbox."""

    def __init__(self, websocket: WebSocket, session_id: str) -> None:
        self.websocket = websocket
        self.session_id = session_id
        self.session: CallSession | None = None
        self.broken = False
        self.sent = 0
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._writer: asyncio.Task | None = None

    def start(self) -> None:
        self._writer = asyncio.get_running_loop().create_task(self._write_loop())

    def send(self, envelope: EnvelopeBase) -> None:
        if self.broken:
            return
        self._outbox.put_nowait(encode(envelope))

    async def stop(self) -> None:
        if self._writer is None:
            return
        writer, self._writer = self._writer, None
        if not writer.done():
            writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await _send_text(self.websocket, frame)
            except TransportError as exc:
                self.broken = True
                logger.warning("ws_send_failed", session_id=self.session_id, error=str(exc))
                if self.session is not None:
                    self.session.close()
                return
            self.sent += 1


async def _send_text(websocket: WebSocket, frame: str) -> None:
    try:
        await websocket.send_text(frame)
    except (RuntimeError, WebSocketDisconnect, OSError) as exc:
        raise TransportError(str(exc) or type(exc).__name__) from exc


class ConnectionManager:
    """Registry of live connections keyed by websocket; mutated on the event loop only."""

    def __init__(
        self,
        sink: InteractionSink,
        *,
        script: ConversationScript = FIRE_EMERGENCY,
        timings: SessionTimings | None = None,
    ) -> None:
        self.sink = sink
        self.script = script
        self.timings = timings or SessionTimings()
        self.connections: dict[WebSocket, SessionConnection] = {}

    @property
    def session_count(self) -> int:
        return len(self.connections)

    @property
    def active_calls(self) -> int:
        return sum(
            1
            for connection in self.connections.values()
            if connection.session is not None
            and not connection.session.closed
            and connection.session.call_active
        )

    async def connect(self, websocket: WebSocket) -> SessionConnection:
        await websocket.accept()
        session_id = new_id()
        connection = SessionConnection(websocket, session_id)
        connection.session = CallSession(
            session_id,
            connection.send,
            script=self.script,
            timings=self.timings,
            sink=self.sink,
        )
        self.connections[websocket] = connection
        connection.start()

        self.sink.record_event(session_id, "connection")
        connection.send(new_envelope("connection:ack", ConnectionAck(session_id=session_id)))
        connection.send(new_envelope("call:state", CallStateData(state="idle")))
        logger.info("ws_connected", session_id=session_id, sessions=self.session_count)
        return connection

    async def disconnect(self, websocket: WebSocket) -> None:
        connection = self.connections.pop(websocket, None)
        if connection is None:
            return
        if connection.session is not None:
            connection.session.close()
        self.sink.record_event(connection.session_id, "disconnection")
        logger.info(
            "ws_disconnected",
            session_id=connection.session_id,
            sent=connection.sent,
            sessions=self.session_count,
        )
        await connection.stop()

    async def close_all(self) -> None:
        for websocket in list(self.connections):
            await self.disconnect(websocket)

    def dispatch(self, connection: SessionConnection, raw: str | bytes) -> None:
        try:
            envelope = decode(raw)
        except MalformedMessage as exc:
            logger.warning(
                "ws_invalid_envelope",
                session_id=connection.session_id,
                message_type=exc.message_type,
                error=exc.reason,
            )
            return

        session = connection.session
        if session is None:
            return

        if isinstance(envelope, CallStartMessage):
            try:
                session.start_call()
            except DuplicateCallStart as exc:
                logger.info(
                    "call_start_ignored",
                    session_id=connection.session_id,
                    state=exc.state,
                    call_id=exc.call_id,
                )
            return

        if isinstance(envelope, CallEndMessage):
            try:
                session.end_call()
            except SpuriousCallEnd as exc:
                logger.info(
                    "call_end_ignored", session_id=connection.session_id, state=exc.state
                )
            return

        if isinstance(envelope, UIInteractionMessage):
            self.sink.record_interaction(connection.session_id, envelope.payload)
            connection.send(new_envelope("ui:interaction:ack", InteractionAck()))
            return

        if isinstance(envelope, UnknownEnvelope):
            logger.info(
                "ws_unknown_event_type",
                session_id=connection.session_id,
                event_type=envelope.type,
            )
            return

        logger.warning(
            "ws_unsupported_event_type",
            session_id=connection.session_id,
            event_type=envelope.type,
        )
