"""
Console client: one websocket to the server, reconnecting forever.

Reconnects use a fixed backoff with no retry cap. Every reconnect starts from
a clean store that is rebuilt from the next ``connection:ack``; an in-flight
call is never resumed.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import structlog
import websockets
from websockets.exceptions import WebSocketException

from call_console.client.store import CallStore
from call_console.codec import decode, encode, new_envelope
from call_console.errors import MalformedMessage
from call_console.schemas.envelope import EnvelopeBase, UIInteraction, now_ms

logger = structlog.get_logger()

RECONNECT_INTERVAL_SECONDS = 3.0

Listener = Callable[[EnvelopeBase, CallStore], None]


class ConsoleClient:
    def __init__(
        self,
        url: str,
        store: CallStore | None = None,
        *,
        reconnect_interval: float = RECONNECT_INTERVAL_SECONDS,
        connect: Callable[[str], Any] = websockets.connect,
    ) -> None:
        self.url = url
        self.store = store or CallStore()
        self.reconnect_interval = reconnect_interval
        self.connection_attempts = 0
        self.reconnects_scheduled = 0
        self._connect = connect
        self._sleep = asyncio.sleep
        self._ws = None
        self._closing = False
        self._listeners: list[Listener] = []

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def run(self) -> None:
        self._closing = False
        while not self._closing:
            self.connection_attempts += 1
            try:
                async with self._connect(self.url) as ws:
                    self._on_open(ws)
                    async for raw in ws:
                        self._on_message(raw)
                logger.info("client_connection_closed", url=self.url)
            except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "client_transport_error",
                    url=self.url,
                    error=str(exc) or type(exc).__name__,
                )
            finally:
                self._on_close()

            if self._closing:
                break
            self.reconnects_scheduled += 1
            logger.info(
                "client_reconnect_scheduled",
                url=self.url,
                delay=self.reconnect_interval,
                attempt=self.connection_attempts + 1,
            )
            await self._sleep(self.reconnect_interval)

    async def close(self) -> None:
        self._closing = True
        ws = self._ws
        if ws is not None:
            await ws.close()

    async def send(self, envelope: EnvelopeBase) -> bool:
        """Send now or reject; nothing is queued while the connection is down."""
        ws = self._ws
        if ws is None:
            logger.warning("client_send_rejected", event_type=envelope.type, reason="not_connected")
            return False
        try:
            await ws.send(encode(envelope))
        except (WebSocketException, OSError) as exc:
            logger.warning("client_send_failed", event_type=envelope.type, error=str(exc))
            return False
        return True

    async def start_call(self) -> bool:
        return await self.send(new_envelope("call:start"))

    async def end_call(self) -> bool:
        return await self.send(new_envelope("call:end"))

    async def track_interaction(
        self, component: str, action: str, metadata: dict[str, Any] | None = None
    ) -> bool:
        interaction = UIInteraction(
            component=component, action=action, timestamp=now_ms(), metadata=metadata
        )
        return await self.send(new_envelope("ui:interaction", interaction))

    def _on_open(self, ws) -> None:
        # A reconnect never inherits state from the previous connection.
        self.store.reset()
        self._ws = ws
        self.store.connected = True
        self.store.notify("Connected to backend", "success")
        logger.info("client_connected", url=self.url, attempt=self.connection_attempts)

    def _on_message(self, raw: str | bytes) -> None:
        try:
            envelope = decode(raw)
        except MalformedMessage as exc:
            logger.warning("client_invalid_envelope", error=exc.reason)
            return
        if not self.store.apply(envelope):
            return
        for listener in self._listeners:
            try:
                listener(envelope, self.store)
            except Exception as exc:
                logger.error(
                    "client_listener_failed",
                    event_type=envelope.type,
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(exc) or type(exc).__name__,
                )

    def _on_close(self) -> None:
        was_connected = self._ws is not None
        self._ws = None
        self.store.reset()
        if self._closing:
            return
        if was_connected:
            self.store.notify("Connection lost, reconnecting", "warning")
        else:
            self.store.notify("Failed to connect", "error")
