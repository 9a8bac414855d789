import argparse
import asyncio
import json
import re
import sys
import uuid
from datetime import UTC, datetime

import websockets

from call_console.codec import decode
from call_console.errors import MalformedMessage

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)
ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")
# Transcript start times may arrive slightly out of order.
START_TIME_TOLERANCE = 0.1


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check a running console server against the wire contract."
    )
    parser.add_argument("--url", default="ws://localhost:8080/tnt", help="Console WebSocket URL")
    parser.add_argument("--calls", type=int, default=2, help="Number of sequential calls")
    parser.add_argument(
        "--call-seconds",
        type=float,
        default=4.0,
        help="How long each call stays active before call:end is sent",
    )
    parser.add_argument("--timeout", type=float, default=40.0, help="Overall timeout in seconds")
    return parser.parse_args()


class Report:
    def __init__(self) -> None:
        self.passed = 0
        self.failed = 0

    def check(self, condition: bool, message: str) -> None:
        if condition:
            self.passed += 1
        else:
            self.failed += 1
            print(f"FAIL: {message}")


def client_envelope(message_type: str) -> str:
    return json.dumps(
        {
            "type": message_type,
            "messageId": str(uuid.uuid4()),
            "timestamp": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }
    )


async def verify(url: str, calls: int, call_seconds: float, report: Report) -> None:
    call_ids: list[str] = []
    current_call_id: str | None = None
    last_start_time = -1.0
    ended_seen = False
    completed = 0

    async with websockets.connect(url) as ws:
        await ws.send(client_envelope("call:start"))
        print("Sent call:start")

        async for raw in ws:
            message = json.loads(raw)
            message_type = message.get("type")
            report.check(UUID_RE.match(str(message.get("messageId", ""))) is not None,
                         f"{message_type}: messageId is a UUID4")
            report.check(ISO_RE.match(str(message.get("timestamp", ""))) is not None,
                         f"{message_type}: timestamp is ISO 8601 with milliseconds")
            report.check("data" not in message, f"{message_type}: no flat data wrapper")
            try:
                decode(raw)
            except MalformedMessage as exc:
                report.check(False, f"{message_type}: decodes cleanly ({exc.reason})")

            if message_type == "transcript:segment":
                segment = message["payload"]
                report.check(not ended_seen, "no transcript segment after call ended")
                report.check(segment["startTime"] >= last_start_time - START_TIME_TOLERANCE,
                             f"startTime non-decreasing ({segment['startTime']} after {last_start_time})")
                last_start_time = segment["startTime"]
                if segment["isFinal"]:
                    report.check("endTime" in segment, "final segment has endTime")
                else:
                    report.check("endTime" not in segment, "interim segment has no endTime")
                print(f"  {segment['speaker']}: {segment['text']}")

            if message_type == "audio:status":
                report.check(not ended_seen, "no audio status after call ended")

            if message_type != "call:state":
                continue

            state = message["payload"]
            print(f"call:state {state['state']} callId={state.get('callId', '-')}")
            if state["state"] in ("idle", "connecting"):
                report.check("callId" not in state, f"{state['state']} carries no callId")
            if state["state"] == "connecting":
                ended_seen = False
                last_start_time = -1.0
            if state["state"] == "active":
                current_call_id = state.get("callId")
                report.check(current_call_id is not None, "active carries callId")
                report.check(current_call_id not in call_ids, "callId differs from earlier calls")
                await asyncio.sleep(call_seconds)
                await ws.send(client_envelope("call:end"))
                print("Sent call:end")
            if state["state"] == "ended":
                ended_seen = True
                report.check(state.get("callId") == current_call_id,
                             "ended callId matches the active callId")
                call_ids.append(state.get("callId"))
                completed += 1
            if state["state"] == "idle" and completed:
                if completed >= calls:
                    return
                await ws.send(client_envelope("call:start"))
                print("Sent call:start")


def main() -> None:
    args = parse_args()
    report = Report()
    try:
        asyncio.run(asyncio.wait_for(verify(args.url, args.calls, args.call_seconds, report), args.timeout))
    except TimeoutError:
        report.check(False, f"completed {args.calls} calls within {args.timeout}s")
    print(f"Passed: {report.passed}  Failed: {report.failed}")
    sys.exit(1 if report.failed else 0)


if __name__ == "__main__":
    main()
