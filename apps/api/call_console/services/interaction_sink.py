import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from call_console.errors import LogAppendFailure
from call_console.schemas.envelope import UIInteraction, now_ms

logger = structlog.get_logger()


class InteractionSink:
    """
    Append-only JSON-lines record of UI interactions and session events.

    Entries go through one queue drained by a single writer task, so entries
    from one session keep their order. Recording never blocks the caller and
    never raises; append failures are reported to the operator log only.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._queue: asyncio.Queue[dict | None] = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self.written = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._writer is not None and not self._writer.done()

    def start(self) -> None:
        if self.running:
            return
        self._writer = asyncio.get_running_loop().create_task(self._drain())
        logger.info("interaction_sink_started", path=str(self.path))

    async def stop(self) -> None:
        if self._writer is None:
            return
        self._queue.put_nowait(None)
        try:
            await self._writer
        finally:
            self._writer = None
        logger.info("interaction_sink_stopped", written=self.written, failed=self.failed)

    def record_interaction(self, session_id: str, interaction: UIInteraction) -> None:
        entry = {"sessionId": session_id, **interaction.model_dump(by_alias=True, exclude_none=True)}
        self._submit(entry)
        logger.info(
            "interaction_received",
            session_id=session_id,
            component=interaction.component,
            action=interaction.action,
        )

    def record_event(self, session_id: str, event_type: str, data: dict[str, Any] | None = None) -> None:
        self._submit(
            {
                "sessionId": session_id,
                "eventType": event_type,
                "data": data or {},
                "timestamp": now_ms(),
            }
        )

    def _submit(self, entry: dict) -> None:
        entry["loggedAt"] = datetime.now(UTC).isoformat()
        self._queue.put_nowait(entry)

    async def _drain(self) -> None:
        while True:
            entry = await self._queue.get()
            if entry is None:
                return
            try:
                await asyncio.to_thread(self._append, entry)
                self.written += 1
            except LogAppendFailure as exc:
                self.failed += 1
                logger.error(
                    "interaction_log_append_failed",
                    path=str(self.path),
                    session_id=entry.get("sessionId"),
                    error=str(exc),
                )

    def _append(self, entry: dict) -> None:
        try:
            line = json.dumps(entry, default=str)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise LogAppendFailure(str(exc)) from exc
