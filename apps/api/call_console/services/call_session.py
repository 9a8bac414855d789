"""
Per-connection call lifecycle: idle -> connecting -> active -> ended -> idle.

A session owns every timer it schedules. Ending the call or closing the
session cancels them together with the state change, and every callback
re-checks its token and the session state when it fires.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from call_console.codec import new_envelope
from call_console.config import Settings
from call_console.errors import DuplicateCallStart, SpuriousCallEnd
from call_console.schemas.envelope import (
    AudioStatus,
    CallStateData,
    CallStateName,
    ChannelStatus,
    EnvelopeBase,
    LanguageDetection,
    new_id,
    now_ms,
)
from call_console.services.interaction_sink import InteractionSink
from call_console.services.playback import FIRE_EMERGENCY, ConversationScript, TimedLine
from call_console.services.timers import TimerScope

logger = structlog.get_logger()

Sender = Callable[[EnvelopeBase], None]

LANGUAGE_DETECTIONS: tuple[tuple[float, LanguageDetection], ...] = (
    (
        1.5,
        LanguageDetection(
            speaker="caller", language_code="es", language_name="Spanish", confidence=0.92
        ),
    ),
    (
        2.0,
        LanguageDetection(
            speaker="telecommunicator",
            language_code="en",
            language_name="English",
            confidence=0.98,
        ),
    ),
)

INITIAL_AUDIO = AudioStatus(
    caller=ChannelStatus(status="streaming", level=75),
    telecommunicator=ChannelStatus(status="streaming", level=80),
)
AUDIO_LEVEL_RANGE = (60, 89)


@dataclass(frozen=True)
class SessionTimings:
    connect_delay: float = 1.0
    idle_delay: float = 2.0
    audio_interval: float = 0.5
    time_scale: float = 1.0

    def scaled(self, seconds: float) -> float:
        return seconds * self.time_scale

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionTimings":
        return cls(
            connect_delay=settings.connect_delay_seconds,
            idle_delay=settings.idle_delay_seconds,
            audio_interval=settings.audio_interval_seconds,
            time_scale=settings.time_scale,
        )


class CallSession:
    def __init__(
        self,
        session_id: str,
        send: Sender,
        *,
        script: ConversationScript = FIRE_EMERGENCY,
        timings: SessionTimings | None = None,
        sink: InteractionSink | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.session_id = session_id
        self.script = script
        self.timings = timings or SessionTimings()
        self.state: CallStateName = "idle"
        self.call_id: str | None = None
        self.activated_at_ms: int | None = None
        self.closed = False
        self.timers = TimerScope(name=f"session:{session_id}")
        self._send = send
        self._sink = sink
        self._rng = rng or random.Random()

    @property
    def call_active(self) -> bool:
        return self.state in ("connecting", "active")

    def start_call(self) -> bool:
        """Begin a call from idle; raises DuplicateCallStart otherwise, changing nothing."""
        if self.closed:
            return False
        if self.state != "idle":
            raise DuplicateCallStart(self.state, self.call_id)

        self._record("call:start")
        self._set_state("connecting")
        self.timers.call_later(self.timings.scaled(self.timings.connect_delay), self._activate)
        return True

    def end_call(self) -> bool:
        if self.closed:
            return False
        if not self.call_active:
            raise SpuriousCallEnd(self.state)

        cancelled = self.timers.cancel()
        # Ending during connecting still needs an id on the ended state.
        call_id = self.call_id or new_id()
        self._record("call:end", {"callId": call_id})
        self._set_state("ended", call_id=call_id)
        logger.info(
            "call_timers_cancelled",
            session_id=self.session_id,
            call_id=call_id,
            cancelled=cancelled,
        )
        self.timers.call_later(self.timings.scaled(self.timings.idle_delay), self._return_to_idle)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        cancelled = self.timers.cancel()
        logger.info(
            "call_session_closed",
            session_id=self.session_id,
            state=self.state,
            call_id=self.call_id,
            cancelled=cancelled,
        )

    def _activate(self) -> None:
        if self.state != "connecting":
            return
        self.activated_at_ms = now_ms()
        self._set_state("active", call_id=new_id())

        for delay, detection in LANGUAGE_DETECTIONS:
            self.timers.call_later(
                self.timings.scaled(delay), self._emitter("language:detected", detection)
            )

        self._emit("audio:status", INITIAL_AUDIO)

        for line in self.script.timeline():
            self.timers.call_later(
                self.timings.scaled(line.delay_ms / 1000), self._segment_emitter(line)
            )

        self.timers.call_every(
            self.timings.scaled(self.timings.audio_interval), self._emit_audio_levels
        )
        logger.info(
            "call_playback_scheduled",
            session_id=self.session_id,
            call_id=self.call_id,
            segments=len(self.script),
            pending=self.timers.pending,
        )

    def _return_to_idle(self) -> None:
        if self.state != "ended":
            return
        self.activated_at_ms = None
        self._set_state("idle")

    def _emitter(self, message_type: str, payload: Any) -> Callable[[], None]:
        def emit() -> None:
            if self.state == "active":
                self._emit(message_type, payload)

        emit.__name__ = f"emit_{message_type}"
        return emit

    def _segment_emitter(self, line: TimedLine) -> Callable[[], None]:
        call_id = self.call_id
        activated_at_ms = self.activated_at_ms or now_ms()

        def emit_segment() -> None:
            # Stale timers stay inert even if cancellation raced the firing.
            if self.state != "active" or self.call_id != call_id:
                return
            self._emit("transcript:segment", line.to_segment(activated_at_ms))

        return emit_segment

    def _emit_audio_levels(self) -> None:
        if self.state != "active":
            return
        low, high = AUDIO_LEVEL_RANGE
        self._emit(
            "audio:status",
            AudioStatus(
                caller=ChannelStatus(status="streaming", level=self._rng.randint(low, high)),
                telecommunicator=ChannelStatus(
                    status="streaming", level=self._rng.randint(low, high)
                ),
            ),
        )

    def _set_state(self, state: CallStateName, call_id: str | None = None) -> None:
        self.state = state
        self.call_id = call_id
        self._emit("call:state", CallStateData(state=state, call_id=call_id))
        logger.info(
            "call_state_changed", session_id=self.session_id, state=state, call_id=call_id
        )

    def _emit(self, message_type: str, payload: Any) -> None:
        if self.closed:
            return
        self._send(new_envelope(message_type, payload))

    def _record(self, event_type: str, data: dict | None = None) -> None:
        if self._sink is not None:
            self._sink.record_event(self.session_id, event_type, data)
