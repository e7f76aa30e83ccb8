"""Message service: the only place rows are created, updated or deleted.

Every write commits first and only then broadcasts on the change feed, so a
subscriber never hears about a row that failed to persist.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from sqlalchemy import asc, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.message import Message
from backend.app.schemas.message import MessageCreate, MessageUpdate
from backend.app.services.broadcaster import broadcast_change

TABLE = "messages"

# Columns only the author may change. Reactions and read receipts are
# written by whoever reacts or reads.
AUTHOR_ONLY_FIELDS = frozenset({"content", "edited", "is_deleted"})


class MessageError(Exception):
    """Service-level failure mapped to an HTTP status by the API layer."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def _now() -> str:
    return datetime.now(UTC).isoformat()


def message_to_dict(msg: Message) -> dict[str, Any]:
    return {
        "id": msg.id,
        "user_id": msg.user_id,
        "content": msg.content,
        "attachment_url": msg.attachment_url,
        "attachment_name": msg.attachment_name,
        "reply_to": msg.reply_to,
        "created_at": msg.created_at,
        "edited": msg.edited,
        "is_deleted": msg.is_deleted,
        "reactions": list(msg.reactions or []),
        "seen_by": list(msg.seen_by or []),
    }


async def list_messages(
    db: AsyncSession,
    *,
    ascending: bool = True,
    limit: int | None = None,
    offset: int = 0,
    user_id: str | None = None,
) -> list[dict[str, Any]]:
    order = asc if ascending else desc
    query = select(Message).order_by(order(Message.created_at), order(Message.id))
    if user_id:
        query = query.where(Message.user_id == user_id)
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return [message_to_dict(m) for m in result.scalars().all()]


async def get_message(db: AsyncSession, message_id: str) -> Message:
    msg = await db.get(Message, message_id)
    if msg is None:
        raise MessageError(404, "Message not found")
    return msg


async def create_message(db: AsyncSession, *, caller_id: str, data: MessageCreate) -> dict[str, Any]:
    """Insert a message authored by ``caller_id`` and announce it."""
    if data.user_id != caller_id:
        raise MessageError(403, "Messages must be authored by the caller")
    if not data.content.strip() and not data.attachment_url:
        raise MessageError(400, "Message needs content or an attachment")
    if data.reply_to:
        target = await db.get(Message, data.reply_to)
        if target is None:
            raise MessageError(400, "Reply target does not exist")

    now = _now()
    msg = Message(
        id=str(uuid.uuid4()),
        user_id=data.user_id,
        content=data.content,
        attachment_url=data.attachment_url,
        attachment_name=data.attachment_name,
        reply_to=data.reply_to,
        created_at=now,
        updated_at=now,
        edited=data.edited,
        is_deleted=data.is_deleted,
        reactions=[r.model_dump() for r in data.reactions],
        seen_by=list(dict.fromkeys(data.seen_by)),
    )
    db.add(msg)
    await db.commit()

    row = message_to_dict(msg)
    logger.info("Message {} created by {}", msg.id, caller_id)
    await broadcast_change("INSERT", TABLE, new=row)
    return row


async def update_message(
    db: AsyncSession, *, caller_id: str, message_id: str, data: MessageUpdate
) -> dict[str, Any]:
    msg = await get_message(db, message_id)
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if AUTHOR_ONLY_FIELDS & changes.keys() and msg.user_id != caller_id:
        raise MessageError(403, "Only the author can change this message")
    if not changes:
        return message_to_dict(msg)

    old = message_to_dict(msg)
    for name, value in changes.items():
        if name == "seen_by":
            # read receipts only accumulate
            value = list(dict.fromkeys([*(msg.seen_by or []), *value]))
        setattr(msg, name, value)
    msg.updated_at = _now()
    await db.commit()

    row = message_to_dict(msg)
    logger.debug("Message {} updated by {}: {}", message_id, caller_id, sorted(changes))
    await broadcast_change("UPDATE", TABLE, new=row, old=old)
    return row


async def delete_message(db: AsyncSession, *, caller_id: str, message_id: str) -> None:
    """Hard delete. The user-facing "delete" is a soft delete via update."""
    msg = await get_message(db, message_id)
    if msg.user_id != caller_id:
        raise MessageError(403, "Only the author can delete this message")

    # reply_to is ON DELETE SET NULL in the schema; mirror it for the feed.
    replies = await db.execute(select(Message).where(Message.reply_to == message_id))
    orphaned = list(replies.scalars().all())
    for reply in orphaned:
        reply.reply_to = None

    await db.delete(msg)
    await db.commit()

    logger.info("Message {} deleted by {}", message_id, caller_id)
    await broadcast_change("DELETE", TABLE, old={"id": message_id})
    for reply in orphaned:
        await broadcast_change("UPDATE", TABLE, new=message_to_dict(reply))
