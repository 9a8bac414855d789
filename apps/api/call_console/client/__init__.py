from call_console.client.connection import ConsoleClient
from call_console.client.reconciler import TranscriptLog
from call_console.client.store import CallStore, Notification

__all__ = ["ConsoleClient", "CallStore", "Notification", "TranscriptLog"]
