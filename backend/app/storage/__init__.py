"""Durable storage for messages, the global log and registered users."""

from .database import Database, SCHEMA_VERSION, run_blocking
from .global_messages import GlobalMessageStore
from .messages import MessageStore
from .schemas import DirectMessage, GlobalMessage, MessageKind, RegisteredUser, utc_isoformat
from .users import UserDirectory

__all__ = [
    "Database",
    "SCHEMA_VERSION",
    "DirectMessage",
    "GlobalMessage",
    "GlobalMessageStore",
    "MessageKind",
    "MessageStore",
    "RegisteredUser",
    "UserDirectory",
    "run_blocking",
    "utc_isoformat",
]
