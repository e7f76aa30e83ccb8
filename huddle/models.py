"""Pydantic models for the chat session core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DELETED_PLACEHOLDER = "This message was deleted"
UNAVAILABLE_REPLY = "Original message unavailable"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _unique(ids: list[str]) -> list[str]:
    """Drop duplicates, keep first-seen order."""
    return list(dict.fromkeys(ids))


# ── Reactions ────────────────────────────────────────────────────────────────

class ReactionEntry(BaseModel):
    """One reaction symbol and the users who picked it."""
    model_config = ConfigDict(frozen=True)

    emoji: str
    user_ids: list[str] = Field(default_factory=list)

    @field_validator("user_ids")
    @classmethod
    def _dedupe_users(cls, value: list[str]) -> list[str]:
        return _unique(value)


# ── Message ──────────────────────────────────────────────────────────────────

class Message(BaseModel):
    """A chat message as held by the client store."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    user_id: str
    content: str = ""
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None
    reply_to: Optional[str] = None
    created_at: datetime
    edited: bool = False
    is_deleted: bool = False
    reactions: list[ReactionEntry] = Field(default_factory=list)
    seen_by: list[str] = Field(default_factory=list)

    @field_validator("id", "user_id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("content", mode="before")
    @classmethod
    def _content_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("created_at")
    @classmethod
    def _tz(cls, value: datetime) -> datetime:
        return _aware(value)

    @field_validator("reactions", mode="before")
    @classmethod
    def _merge_reactions(cls, value: Any) -> Any:
        # Backends hand us whatever was last written; fold it back into
        # one entry per symbol and drop entries nobody is left in.
        if value is None:
            return []
        merged: dict[str, list[str]] = {}
        for raw in value:
            entry = raw if isinstance(raw, ReactionEntry) else ReactionEntry.model_validate(raw)
            merged.setdefault(entry.emoji, []).extend(entry.user_ids)
        return [
            ReactionEntry(emoji=emoji, user_ids=users)
            for emoji, users in merged.items()
            if users
        ]

    @field_validator("seen_by", mode="before")
    @classmethod
    def _dedupe_seen(cls, value: Any) -> Any:
        if value is None:
            return []
        return _unique(list(value))

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)

    @property
    def has_attachment(self) -> bool:
        return bool(self.attachment_url)

    def reaction(self, emoji: str) -> Optional[ReactionEntry]:
        for entry in self.reactions:
            if entry.emoji == emoji:
                return entry
        return None


# ── Presence ─────────────────────────────────────────────────────────────────

class PresenceEntry(BaseModel):
    """Last time a user was seen typing. ``None`` means explicitly stopped."""
    user_id: str
    last_typing_at: Optional[datetime] = None

    @field_validator("last_typing_at")
    @classmethod
    def _tz(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _aware(value) if value is not None else None


# ── Profiles ─────────────────────────────────────────────────────────────────

class Profile(BaseModel):
    """Public profile used to turn user ids into display names."""
    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    full_name: Optional[str] = None


class OnlineStatus(BaseModel):
    """Whether a user currently has the chat open."""
    model_config = ConfigDict(extra="ignore")

    user_id: str
    online: bool = False


# ── Change feed ──────────────────────────────────────────────────────────────

class FeedEvent(BaseModel):
    """One notification from the change feed."""
    model_config = ConfigDict(populate_by_name=True)

    event_type: Literal["INSERT", "UPDATE", "DELETE"] = Field(alias="type")
    table: str
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None


# ── Composer ─────────────────────────────────────────────────────────────────

@dataclass
class AttachmentFile:
    """A local file waiting to be uploaded with the next message."""

    filename: str
    data: bytes
    content_type: str = "application/octet-stream"


@dataclass
class Draft:
    """Pending outgoing message."""

    content: str = ""
    reply_to: Optional[str] = None
    attachment: Optional[AttachmentFile] = None

    def clear(self) -> None:
        self.content = ""
        self.reply_to = None
        self.attachment = None


# ── Notices ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Notice:
    """Transient, user-visible notification."""

    level: Literal["info", "error"]
    text: str
    created_at: datetime = field(default_factory=utcnow)
