"""Reaction toggling.

The whole reaction list is the unit of persistence: callers write back the
complete list returned here, never a delta.
"""

from __future__ import annotations

from collections.abc import Sequence

from .models import Message, ReactionEntry

REACTION_EMOJIS = ["👍", "❤️", "🔥", "😂", "🎉", "😮", "👏"]


def toggle_reaction(
    reactions: Sequence[ReactionEntry],
    emoji: str,
    user_id: str,
) -> list[ReactionEntry]:
    """Add or remove ``user_id`` under ``emoji``.

    An entry whose last user leaves is dropped, so re-adding that emoji puts
    it at the end of the list. Applying the toggle twice therefore restores
    the same emoji-to-users mapping but not always the same order.
    """
    result: list[ReactionEntry] = []
    found = False
    for entry in reactions:
        if entry.emoji != emoji:
            result.append(entry)
            continue
        found = True
        if user_id in entry.user_ids:
            remaining = [uid for uid in entry.user_ids if uid != user_id]
            if remaining:
                result.append(ReactionEntry(emoji=emoji, user_ids=remaining))
        else:
            result.append(ReactionEntry(emoji=emoji, user_ids=[*entry.user_ids, user_id]))
    if not found:
        result.append(ReactionEntry(emoji=emoji, user_ids=[user_id]))
    return result


def toggle_message_reaction(message: Message, emoji: str, user_id: str) -> Message:
    return message.model_copy(
        update={"reactions": toggle_reaction(message.reactions, emoji, user_id)}
    )


def has_reacted(message: Message, emoji: str, user_id: str) -> bool:
    entry = message.reaction(emoji)
    return entry is not None and user_id in entry.user_ids


def reactions_payload(message: Message) -> list[dict]:
    """Serialize the full reaction list for the store."""
    return [entry.model_dump() for entry in message.reactions]
