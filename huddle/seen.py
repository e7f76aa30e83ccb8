"""Seen receipts.

Only the most recent message is ever marked, on a fixed poll plus once on
every store change. Older unseen messages are left alone to keep write
volume bounded.
"""

from __future__ import annotations

from collections.abc import Callable

from .backend import MessageRepository
from .errors import PersistenceError
from .log import logger
from .models import Message
from .store import MessageStore


def mark_seen(message: Message, user_id: str) -> Message | None:
    """Return ``message`` with ``user_id`` in ``seen_by``, or None if already there."""
    if user_id in message.seen_by:
        return None
    return message.model_copy(update={"seen_by": [*message.seen_by, user_id]})


class SeenTracker:
    """Marks the latest message of a store as seen by the current user."""

    def __init__(
        self,
        store: MessageStore,
        repo: MessageRepository,
        user_id: str,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._repo = repo
        self._user_id = user_id
        self._on_error = on_error
        self._in_flight: set[str] = set()

    async def mark_latest(self) -> bool:
        """Mark the newest message. Returns True if a write happened."""
        latest = self._store.latest()
        if latest is None or latest.id in self._in_flight:
            return False
        updated = mark_seen(latest, self._user_id)
        if updated is None:
            return False

        self._in_flight.add(latest.id)
        try:
            await self._repo.update_message(latest.id, {"seen_by": updated.seen_by})
        except PersistenceError as exc:
            logger.warning("Failed to mark {} seen: {}", latest.id, exc)
            if self._on_error:
                self._on_error("Could not update read receipts")
            return False
        finally:
            self._in_flight.discard(latest.id)

        current = self._store.get(latest.id)
        if current is not None:
            refreshed = mark_seen(current, self._user_id)
            if refreshed is not None:
                self._store.apply_update(refreshed)
        logger.debug("Marked {} seen by {}", latest.id, self._user_id)
        return True
