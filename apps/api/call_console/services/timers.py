import asyncio
from collections.abc import Callable

import structlog

logger = structlog.get_logger()


class CancellationToken:
    __slots__ = ("revoked",)

    def __init__(self) -> None:
        self.revoked = False

    def revoke(self) -> None:
        self.revoked = True


class TimerScope:
    """
    Owns every pending timer of one session.

    Callbacks run on the event loop and only if the token they were registered
    under is still valid when they fire. ``cancel()`` revokes the token and
    cancels the tasks in one step, so nothing registered before the cancel can
    run after it returns.
    """

    def __init__(self, name: str = "timers") -> None:
        self.name = name
        self._token = CancellationToken()
        self._tasks: set[asyncio.Task] = set()

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.Task:
        return self._spawn(self._run_later(self._token, delay, callback))

    def call_every(self, interval: float, callback: Callable[[], None]) -> asyncio.Task:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        return self._spawn(self._run_every(self._token, interval, callback))

    def cancel(self) -> int:
        """Revoke the current token and cancel all tasks; returns how many were pending."""
        self._token.revoke()
        self._token = CancellationToken()
        cancelled = 0
        for task in self._tasks:
            if not task.done():
                task.cancel()
                cancelled += 1
        self._tasks.clear()
        return cancelled

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_later(
        self, token: CancellationToken, delay: float, callback: Callable[[], None]
    ) -> None:
        try:
            await asyncio.sleep(max(0.0, delay))
        except asyncio.CancelledError:
            return
        if token.revoked:
            return
        self._invoke(callback)

    async def _run_every(
        self, token: CancellationToken, interval: float, callback: Callable[[], None]
    ) -> None:
        try:
            while True:
                await asyncio.sleep(interval)
                if token.revoked:
                    return
                self._invoke(callback)
        except asyncio.CancelledError:
            return

    def _invoke(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as exc:
            logger.error(
                "timer_callback_failed",
                scope=self.name,
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(exc),
            )
