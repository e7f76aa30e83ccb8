"""Display helpers shared by the CLI and any other front end."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from .models import DELETED_PLACEHOLDER, UNAVAILABLE_REPLY, Message, Profile
from .store import MessageStore

SEEN_BY_LIMIT = 20
REPLY_SNIPPET_LENGTH = 80


@dataclass(frozen=True)
class ReplyPreview:
    available: bool
    author_id: str | None
    snippet: str


def body_text(message: Message) -> str:
    if message.is_deleted:
        return DELETED_PLACEHOLDER
    return message.content


def reply_preview(store: MessageStore, message: Message) -> ReplyPreview | None:
    """Preview of the message being replied to, or None if not a reply."""
    if not message.reply_to:
        return None
    target = store.get(message.reply_to)
    if target is None or target.is_deleted:
        return ReplyPreview(available=False, author_id=None, snippet=UNAVAILABLE_REPLY)
    snippet = target.content or (target.attachment_name or "")
    if len(snippet) > REPLY_SNIPPET_LENGTH:
        snippet = snippet[: REPLY_SNIPPET_LENGTH - 1] + "…"
    return ReplyPreview(available=True, author_id=target.user_id, snippet=snippet)


def display_name(profiles: Mapping[str, Profile], user_id: str) -> str:
    profile = profiles.get(user_id)
    if profile is None:
        return user_id
    return profile.full_name or profile.username


def typing_line(names: list[str]) -> str:
    if not names:
        return ""
    return f"{', '.join(names)} typing..."


def seen_by_names(
    message: Message,
    profiles: Mapping[str, Profile],
    limit: int = SEEN_BY_LIMIT,
) -> str:
    if not message.seen_by:
        return "No one"
    return ", ".join(display_name(profiles, uid) for uid in message.seen_by[:limit])
