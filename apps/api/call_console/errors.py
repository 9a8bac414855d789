"""
Error taxonomy for the console protocol core.

None of these are fatal to the process: malformed frames are dropped, duplicate
starts and spurious ends are ignored, transport failures tear down a single
session (server) or trigger a reconnect (client), and log append failures go
to the operator log only.
"""


class ConsoleError(Exception):
    """Base class for console protocol errors."""


class MalformedMessage(ConsoleError):
    """Raised when an inbound frame fails structural or payload validation."""

    def __init__(self, reason: str, message_type: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.message_type = message_type


class TransportError(ConsoleError):
    """Raised when the underlying connection fails while sending or receiving."""


class LogAppendFailure(ConsoleError):
    """Raised internally when an interaction log entry cannot be written."""


class DuplicateCallStart(ConsoleError):
    """``call:start`` while a call is already in progress; nothing changes."""

    def __init__(self, state: str, call_id: str | None = None) -> None:
        super().__init__(f"call already {state}")
        self.state = state
        self.call_id = call_id


class SpuriousCallEnd(ConsoleError):
    """``call:end`` with no call in progress; nothing changes."""

    def __init__(self, state: str) -> None:
        super().__init__(f"no call in progress (state {state})")
        self.state = state
