"""Outgoing message composition and send."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from .backend import FileStorage, MessageRepository
from .errors import AttachmentUploadError, PersistenceError, ValidationError
from .log import logger
from .models import AttachmentFile, Draft, utcnow
from .presence import TypingNotifier
from .store import MessageStore

GIF_ATTACHMENT_NAME = "gif.gif"

_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r"[^\w.-]")


def sanitize_filename(name: str) -> str:
    return _UNSAFE.sub("_", _WHITESPACE.sub("_", name))


def attachment_path(user_id: str, filename: str, now: datetime | None = None) -> str:
    """Storage key: ``<user>/<epoch ms>_<sanitized name>``."""
    millis = int((now or utcnow()).timestamp() * 1000)
    return f"{user_id}/{millis}_{sanitize_filename(filename)}"


def validate_draft(draft: Draft, store: MessageStore | None = None) -> None:
    if not draft.content.strip() and draft.attachment is None:
        raise ValidationError("Type a message or attach a file")
    if draft.reply_to and store is not None and draft.reply_to not in store:
        raise ValidationError("The message you are replying to no longer exists")


def new_message_payload(
    user_id: str,
    content: str,
    *,
    attachment_url: str | None = None,
    attachment_name: str | None = None,
    reply_to: str | None = None,
) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "content": content,
        "attachment_url": attachment_url,
        "attachment_name": attachment_name,
        "reply_to": reply_to,
        "reactions": [],
        "seen_by": [user_id],
        "edited": False,
        "is_deleted": False,
    }


class Composer:
    """Holds the draft and sends it.

    Sending does not touch the store: the new row comes back through the
    change feed like any peer's message.
    """

    def __init__(
        self,
        user_id: str,
        repo: MessageRepository,
        storage: FileStorage,
        store: MessageStore,
        typing: TypingNotifier | None = None,
    ) -> None:
        self.user_id = user_id
        self.draft = Draft()
        self._repo = repo
        self._storage = storage
        self._store = store
        self._typing = typing

    async def set_content(self, text: str) -> None:
        self.draft.content = text
        if self._typing is not None:
            await self._typing.touch()

    def reply_to(self, message_id: str | None) -> None:
        self.draft.reply_to = message_id

    def attach(self, attachment: AttachmentFile | None) -> None:
        self.draft.attachment = attachment

    async def _upload(self, attachment: AttachmentFile) -> str:
        path = attachment_path(self.user_id, attachment.filename)
        try:
            stored = await self._storage.upload(path, attachment.data, attachment.content_type)
        except PersistenceError as exc:
            raise AttachmentUploadError(f"Upload failed: {exc}") from exc
        url = self._storage.public_url(stored)
        if not url:
            raise AttachmentUploadError("Storage returned no public URL")
        return url

    async def send(self) -> dict[str, Any]:
        """Persist the draft. Raises ValidationError / AttachmentUploadError / PersistenceError."""
        draft = self.draft
        validate_draft(draft, self._store)

        attachment_url = attachment_name = None
        if draft.attachment is not None:
            attachment_url = await self._upload(draft.attachment)
            attachment_name = draft.attachment.filename

        row = await self._repo.insert_message(
            new_message_payload(
                self.user_id,
                draft.content,
                attachment_url=attachment_url,
                attachment_name=attachment_name,
                reply_to=draft.reply_to,
            )
        )
        logger.info("Sent message {} (attachment={})", row.get("id"), attachment_name)

        draft.clear()
        if self._typing is not None:
            await self._typing.stop()
        return row

    async def send_gif(self, gif_url: str) -> dict[str, Any]:
        if not gif_url:
            raise ValidationError("No GIF selected")
        row = await self._repo.insert_message(
            new_message_payload(
                self.user_id,
                "",
                attachment_url=gif_url,
                attachment_name=GIF_ATTACHMENT_NAME,
            )
        )
        logger.info("Sent gif {}", row.get("id"))
        return row
