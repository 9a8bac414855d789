import argparse
import asyncio

from call_console.client import CallStore, ConsoleClient
from call_console.config import settings
from call_console.logging_config import setup_logging
from call_console.schemas.envelope import (
    AudioStatusMessage,
    CallStateMessage,
    EnvelopeBase,
    LanguageDetectedMessage,
    TranscriptSegmentMessage,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow a call console session from the terminal.")
    parser.add_argument("--url", default=settings.client_url, help="Console WebSocket URL")
    parser.add_argument(
        "--start-call",
        action="store_true",
        help="Send call:start once the connection is acknowledged",
    )
    parser.add_argument(
        "--end-after",
        type=float,
        default=None,
        help="Send call:end this many seconds after the call becomes active",
    )
    parser.add_argument(
        "--show-audio",
        action="store_true",
        help="Print audio:status updates (noisy, every 0.5s)",
    )
    parser.add_argument(
        "--reconnect-interval",
        type=float,
        default=settings.reconnect_interval_seconds,
        help="Fixed delay before each reconnect attempt",
    )
    return parser.parse_args()


def render(envelope: EnvelopeBase, store: CallStore, show_audio: bool) -> None:
    if isinstance(envelope, CallStateMessage):
        call_id = envelope.payload.call_id or "-"
        print(f"[call] {envelope.payload.state.upper():<10} call_id={call_id}")
    elif isinstance(envelope, LanguageDetectedMessage):
        detection = envelope.payload
        print(
            f"[lang] {detection.speaker:<16} {detection.language_name} "
            f"({detection.language_code}, {detection.confidence:.0%})"
        )
    elif isinstance(envelope, TranscriptSegmentMessage):
        segment = envelope.payload
        marker = "final" if segment.is_final else "..."
        print(f"[{segment.start_time:6.2f}s] {segment.speaker:<16} {segment.text} ({marker})")
    elif isinstance(envelope, AudioStatusMessage) and show_audio:
        audio = envelope.payload
        print(
            "[audio] "
            f"caller={audio.caller.status}:{audio.caller.level} "
            f"telecommunicator={audio.telecommunicator.status}:{audio.telecommunicator.level}"
        )


async def follow(args: argparse.Namespace) -> None:
    client = ConsoleClient(args.url, reconnect_interval=args.reconnect_interval)
    call_started = False
    end_task: asyncio.Task | None = None

    async def end_later(delay: float) -> None:
        await asyncio.sleep(delay)
        print(f"Ending call after {delay:.1f}s")
        await client.end_call()

    def on_envelope(envelope: EnvelopeBase, store: CallStore) -> None:
        nonlocal call_started, end_task
        render(envelope, store, args.show_audio)
        if envelope.type == "connection:ack":
            print(f"Connected, session_id={store.session_id}")
            if args.start_call and not call_started:
                call_started = True
                asyncio.get_running_loop().create_task(client.start_call())
        if (
            isinstance(envelope, CallStateMessage)
            and envelope.payload.state == "active"
            and args.end_after is not None
            and end_task is None
        ):
            end_task = asyncio.get_running_loop().create_task(end_later(args.end_after))

    client.add_listener(on_envelope)
    try:
        await client.run()
    finally:
        await client.close()


def main() -> None:
    args = parse_args()
    setup_logging(settings.log_level, settings.environment)
    try:
        asyncio.run(follow(args))
    except KeyboardInterrupt:
        print("Stopped")


if __name__ == "__main__":
    main()
