"""Change-feed listener.

Bridges feed notifications into the message store. The feed only promises
at-least-once delivery in some order, so:

- every event goes through the store reducer (idempotent inserts,
  last-applied-wins updates);
- on any disconnect we resubscribe and then re-fetch the whole collection
  instead of trying to resume where the feed left off.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from .backend import ChangeFeed, MessageRepository
from .errors import FeedDisconnect, PersistenceError
from .log import logger
from .store import MESSAGES_TABLE, MessageStore


class ChangeFeedListener:
    def __init__(
        self,
        feed: ChangeFeed,
        repo: MessageRepository,
        store: MessageStore,
        *,
        reconnect_delay: float = 1.0,
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self._feed = feed
        self._repo = repo
        self._store = store
        self._reconnect_delay = reconnect_delay
        self._on_notice = on_notice
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._synced = asyncio.Event()
        self.resync_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def resync(self) -> None:
        """Replace the store contents with a full fetch."""
        rows = await self._repo.select_messages(ascending=True)
        self._store.replace_all(rows)
        self.resync_count += 1
        logger.debug("Resynced {} messages", len(self._store))

    def start(self) -> asyncio.Task:  # type: ignore[type-arg]
        if self.running:
            return self._task  # type: ignore[return-value]
        self._synced.clear()
        self._task = asyncio.create_task(self._run(), name="change-feed-listener")
        return self._task

    async def wait_synced(self) -> None:
        """Block until the first subscribe + fetch has completed."""
        await self._synced.wait()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Change feed listener stopped")

    async def _run(self) -> None:
        while True:
            try:
                async with self._feed.subscribe([MESSAGES_TABLE]) as events:
                    # Fetch after subscribing so nothing falls in between.
                    await self.resync()
                    self._synced.set()
                    async for event in events:
                        self._store.apply_event(event)
            except (FeedDisconnect, PersistenceError) as exc:
                logger.warning("Change feed interrupted: {}", exc)
                self._notify_reconnect()
            except Exception:
                # Bad rows or a buggy listener must not end the subscription for good.
                logger.exception("Change feed listener failed, resubscribing")
                self._notify_reconnect()
            await asyncio.sleep(self._reconnect_delay)

    def _notify_reconnect(self) -> None:
        if self._on_notice:
            self._on_notice("Reconnecting to chat...")
