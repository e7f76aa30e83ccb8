"""Huddle: realtime chat session core."""

from .errors import (
    AttachmentUploadError,
    FeedDisconnect,
    HuddleError,
    PersistenceError,
    ValidationError,
)
from .models import Draft, FeedEvent, Message, PresenceEntry, ReactionEntry
from .session import ChatSession
from .store import MessageStore

__version__ = "0.1.0"

__all__ = [
    "AttachmentUploadError",
    "ChatSession",
    "Draft",
    "FeedDisconnect",
    "FeedEvent",
    "HuddleError",
    "Message",
    "MessageStore",
    "PersistenceError",
    "PresenceEntry",
    "ReactionEntry",
    "ValidationError",
]
