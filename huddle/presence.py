"""Typing presence.

Two halves:

- ``PresenceTracker`` keeps the last-typing timestamp per user (as polled from
  the backend) and answers "who is typing right now".
- ``TypingNotifier`` is the composing side: it upserts our own timestamp on
  every keystroke and clears it after an idle debounce.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime, timedelta

from .backend import PresenceRepository
from .errors import HuddleError
from .log import logger
from .models import PresenceEntry, utcnow


class PresenceTracker:
    """Per-user last-typing map with a freshness window."""

    def __init__(self, freshness_window: float = 6.0, display_cap: int = 3) -> None:
        self.freshness_window = timedelta(seconds=freshness_window)
        self.display_cap = display_cap
        self._last_typing: dict[str, datetime | None] = {}

    def record_typing(self, user_id: str, at: datetime | None = None) -> None:
        self._last_typing[user_id] = at or utcnow()

    def clear_typing(self, user_id: str) -> None:
        self._last_typing[user_id] = None

    def load(self, entries: Iterable[PresenceEntry]) -> None:
        """Replace the map with a fresh snapshot from the backend."""
        self._last_typing = {e.user_id: e.last_typing_at for e in entries}

    def is_active(self, user_id: str, now: datetime | None = None) -> bool:
        ts = self._last_typing.get(user_id)
        if ts is None:
            return False
        return (now or utcnow()) - ts < self.freshness_window

    def active_typists(
        self,
        exclude: str | None = None,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[str]:
        """Users typing within the freshness window, most recent first."""
        now = now or utcnow()
        active = [
            (ts, uid)
            for uid, ts in self._last_typing.items()
            if uid != exclude and ts is not None and self.is_active(uid, now)
        ]
        active.sort(key=lambda pair: (-pair[0].timestamp(), pair[1]))
        cap = self.display_cap if limit is None else limit
        return [uid for _, uid in active[:cap]]


class TypingNotifier:
    """Debounced typing signal for the local user.

    Every ``touch()`` upserts ``now`` and restarts an idle timer; when the
    timer fires the flag is cleared. Presence is best effort, so backend
    failures are logged and otherwise ignored.
    """

    def __init__(self, repo: PresenceRepository, user_id: str, idle: float = 2.0) -> None:
        self._repo = repo
        self._user_id = user_id
        self._idle = idle
        self._timer: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def touch(self) -> None:
        self._cancel_timer()
        await self._publish(utcnow())
        self._timer = asyncio.create_task(self._clear_after_idle())

    async def stop(self) -> None:
        """Cancel the idle timer and clear the flag right away."""
        self._cancel_timer()
        await self._publish(None)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _clear_after_idle(self) -> None:
        await asyncio.sleep(self._idle)
        await self._publish(None)

    async def _publish(self, at: datetime | None) -> None:
        try:
            await self._repo.upsert_typing(self._user_id, at)
        except HuddleError as exc:
            logger.debug("Typing update failed for {}: {}", self._user_id, exc)
