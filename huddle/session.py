"""Chat session: one open conversation and everything attached to it.

A ``ChatSession`` owns its store, presence map, composer, listener and
pollers. Nothing here is module-global, so several sessions can coexist.

Every public operation is an error boundary: ``HuddleError`` subclasses are
turned into ``Notice`` entries and the operation reports failure by return
value. Nothing a backend does can tear the session down.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from .backend import ChangeFeed, ChatBackend
from .composer import Composer
from .config import ClientSettings, client_settings
from .errors import HuddleError, PersistenceError, ValidationError
from .listener import ChangeFeedListener
from .log import logger
from .models import AttachmentFile, Message, Notice, Profile
from .presence import PresenceTracker, TypingNotifier
from .reactions import reactions_payload, toggle_message_reaction
from .render import display_name, typing_line
from .seen import SeenTracker
from .store import MessageStore

T = TypeVar("T")

NoticeCallback = Callable[[Notice], None]


class ChatSession:
    def __init__(
        self,
        user_id: str,
        backend: ChatBackend,
        feed: ChangeFeed,
        *,
        settings: ClientSettings | None = None,
        on_notice: NoticeCallback | None = None,
    ) -> None:
        self.user_id = user_id
        self.settings = settings or client_settings
        self.backend = backend
        self.store = MessageStore()
        self.presence = PresenceTracker(
            freshness_window=self.settings.freshness_window,
            display_cap=self.settings.typist_display_cap,
        )
        self.typing = TypingNotifier(backend, user_id, idle=self.settings.typing_idle)
        self.composer = Composer(user_id, backend, backend, self.store, self.typing)
        self.listener = ChangeFeedListener(
            feed,
            backend,
            self.store,
            reconnect_delay=self.settings.reconnect_delay,
            on_notice=self._info,
        )
        self.seen = SeenTracker(self.store, backend, user_id, on_error=self._error)
        self.profiles: dict[str, Profile] = {}
        self.online: dict[str, bool] = {}
        self.notices: deque[Notice] = deque(maxlen=50)
        self._on_notice = on_notice
        self._tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._remove_store_listener: Callable[[], None] | None = None
        self._open = False

    # --- lifecycle ---

    async def open(self, *, wait_for_sync: bool = True) -> None:
        if self._open:
            return
        self._open = True
        self._remove_store_listener = self.store.add_listener(self._on_store_change)
        self.listener.start()
        self._spawn(self._poll(self.settings.seen_poll_interval, self.seen.mark_latest))
        self._spawn(self._poll(self.settings.typing_poll_interval, self.refresh_typing))
        await self._announce(online=True)
        await self.refresh_profiles()
        if wait_for_sync:
            await self.listener.wait_synced()
        logger.info("Chat session opened for {} ({} messages)", self.user_id, len(self.store))

    async def close(self) -> None:
        """Unsubscribe, stop pollers, clear our typing flag and go offline."""
        if not self._open:
            return
        self._open = False
        if self._remove_store_listener is not None:
            self._remove_store_listener()
            self._remove_store_listener = None
        try:
            await self.listener.stop()
        finally:
            # Pollers and the typing timer go away even if the listener died badly.
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
            await self.typing.stop()
            await self._announce(online=False)
            logger.info("Chat session closed for {}", self.user_id)

    async def __aenter__(self) -> ChatSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:  # type: ignore[type-arg]
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _poll(self, interval: float, fn: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await fn()
            await asyncio.sleep(interval)

    def _on_store_change(self, store: MessageStore) -> None:
        if self._open:
            self._spawn(self.seen.mark_latest())

    # --- notices ---

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self._on_notice is not None:
            self._on_notice(notice)

    def _info(self, text: str) -> None:
        self._notify(Notice("info", text))

    def _error(self, text: str) -> None:
        self._notify(Notice("error", text))

    async def _guard(self, action: str, op: Awaitable[T]) -> T | None:
        try:
            return await op
        except HuddleError as exc:
            logger.warning("{} failed: {}", action, exc)
            self._error(str(exc) if isinstance(exc, ValidationError) else f"Failed to {action}")
            return None

    # --- composer ---

    async def on_input(self, text: str) -> None:
        await self.composer.set_content(text)

    def reply_to(self, message_id: str | None) -> None:
        self.composer.reply_to(message_id)

    def attach(self, attachment: AttachmentFile | None) -> None:
        self.composer.attach(attachment)

    async def send(self) -> bool:
        return await self._guard("send message", self.composer.send()) is not None

    async def send_gif(self, gif_url: str) -> bool:
        return await self._guard("send gif", self.composer.send_gif(gif_url)) is not None

    # --- message actions ---

    def _require(self, message_id: str) -> Message:
        message = self.store.get(message_id)
        if message is None:
            raise ValidationError("Message not found")
        return message

    def _require_own(self, message_id: str) -> Message:
        message = self._require(message_id)
        if message.user_id != self.user_id:
            raise ValidationError("You can only change your own messages")
        return message

    async def _toggle_reaction(self, message_id: str, emoji: str) -> Message:
        before = self._require(message_id)
        after = toggle_message_reaction(before, emoji, self.user_id)
        self.store.apply_local(after)
        try:
            await self.backend.update_message(message_id, {"reactions": reactions_payload(after)})
        except PersistenceError:
            # Revert only if the feed has not delivered something newer meanwhile.
            if self.store.get(message_id) is after:
                self.store.apply_local(before)
            raise
        return after

    async def react(self, message_id: str, emoji: str) -> bool:
        return await self._guard("react", self._toggle_reaction(message_id, emoji)) is not None

    async def _edit(self, message_id: str, content: str) -> dict[str, Any]:
        self._require_own(message_id)
        if not content.strip():
            raise ValidationError("Message cannot be empty")
        return await self.backend.update_message(message_id, {"content": content, "edited": True})

    async def edit(self, message_id: str, content: str) -> bool:
        return await self._guard("edit", self._edit(message_id, content)) is not None

    async def _soft_delete(self, message_id: str) -> dict[str, Any]:
        self._require_own(message_id)
        return await self.backend.update_message(message_id, {"is_deleted": True})

    async def delete(self, message_id: str) -> bool:
        ok = await self._guard("delete", self._soft_delete(message_id)) is not None
        if ok:
            self._info("Message deleted")
        return ok

    async def mark_seen(self) -> bool:
        return bool(await self._guard("mark seen", self.seen.mark_latest()))

    # --- presence / profiles ---

    async def refresh_typing(self) -> None:
        try:
            entries = await self.backend.list_typing()
        except HuddleError as exc:
            logger.debug("Typing poll failed: {}", exc)
            return
        self.presence.load(entries)

    async def refresh_profiles(self) -> None:
        """Reload display names and the online map. Either may fail on its own."""
        try:
            profiles = await self.backend.list_profiles()
        except HuddleError as exc:
            logger.warning("Could not load profiles: {}", exc)
        else:
            self.profiles = {p.id: p for p in profiles}
        try:
            statuses = await self.backend.list_status()
        except HuddleError as exc:
            logger.debug("Could not load online status: {}", exc)
        else:
            self.online = {s.user_id: s.online for s in statuses}

    async def _announce(self, *, online: bool) -> None:
        try:
            await self.backend.set_online(self.user_id, online)
        except HuddleError as exc:
            logger.debug("Online status update failed for {}: {}", self.user_id, exc)

    def is_online(self, user_id: str) -> bool:
        return self.online.get(user_id, False)

    def typists(self, now: datetime | None = None) -> list[str]:
        """Display names of other users typing right now."""
        ids = self.presence.active_typists(exclude=self.user_id, now=now)
        return [display_name(self.profiles, uid) for uid in ids]

    def typing_line(self, now: datetime | None = None) -> str:
        return typing_line(self.typists(now))

    def name_of(self, user_id: str) -> str:
        return display_name(self.profiles, user_id)
