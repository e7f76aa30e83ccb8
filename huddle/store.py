"""Message store for one open conversation.

The store is a thin mutable holder around an immutable ``StoreState``. All
state transitions go through the pure reducer functions below, so feed
reconciliation can be tested without a network connection:

    state = reduce(state, event)

Display order is always ``(created_at, id)`` ascending, regardless of the
order in which the feed delivered records.
"""

from __future__ import annotations

import bisect
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .log import logger
from .models import FeedEvent, Message

MESSAGES_TABLE = "messages"


@dataclass(frozen=True)
class StoreState:
    """Sorted, duplicate-free snapshot of a conversation."""

    messages: tuple[Message, ...] = ()

    def index_of(self, message_id: str) -> int | None:
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return None

    def get(self, message_id: str) -> Message | None:
        i = self.index_of(message_id)
        return None if i is None else self.messages[i]


def coerce_message(row: Message | Mapping[str, Any] | None) -> Message | None:
    """Turn a raw record into a Message, or drop it with a warning."""
    if isinstance(row, Message):
        return row
    if not row:
        logger.warning("Dropping empty message record")
        return None
    try:
        return Message.model_validate(dict(row))
    except PydanticValidationError as exc:
        logger.warning(
            "Dropping malformed message record id={}: {} error(s)",
            row.get("id"),
            exc.error_count(),
        )
        return None


def _insert_sorted(messages: tuple[Message, ...], message: Message) -> tuple[Message, ...]:
    pos = bisect.bisect_right(messages, message.sort_key, key=lambda m: m.sort_key)
    return messages[:pos] + (message,) + messages[pos:]


def apply_insert(state: StoreState, message: Message) -> StoreState:
    """Add ``message`` unless its id is already present (feed may redeliver)."""
    if state.index_of(message.id) is not None:
        return state
    return StoreState(_insert_sorted(state.messages, message))


def apply_update(state: StoreState, message: Message) -> StoreState:
    """Replace the stored record; insert it if we never saw the insert."""
    i = state.index_of(message.id)
    if i is None:
        return apply_insert(state, message)

    current = state.messages[i]
    # seen_by only ever grows, even if a stale write comes back to us
    missing = [uid for uid in current.seen_by if uid not in message.seen_by]
    if missing:
        message = message.model_copy(update={"seen_by": [*message.seen_by, *missing]})
    if message == current:
        return state

    remaining = state.messages[:i] + state.messages[i + 1:]
    return StoreState(_insert_sorted(remaining, message))


def apply_delete(state: StoreState, message_id: str) -> StoreState:
    """Hard-remove a record. Soft deletes arrive as updates instead."""
    i = state.index_of(message_id)
    if i is None:
        return state
    return StoreState(state.messages[:i] + state.messages[i + 1:])


def reduce(state: StoreState, event: FeedEvent) -> StoreState:
    """Apply one change-feed notification to ``state``."""
    if event.table != MESSAGES_TABLE:
        return state

    if event.event_type == "DELETE":
        message_id = (event.old or {}).get("id")
        if not message_id:
            logger.warning("Dropping DELETE event without an id")
            return state
        return apply_delete(state, message_id)

    message = coerce_message(event.new)
    if message is None:
        return state
    if event.event_type == "INSERT":
        return apply_insert(state, message)
    return apply_update(state, message)


def build_state(rows: Iterable[Message | Mapping[str, Any]]) -> StoreState:
    state = StoreState()
    for row in rows:
        message = coerce_message(row)
        if message is not None:
            state = apply_update(state, message)
    return state


# ── Day grouping ─────────────────────────────────────────────────────────────

def day_label(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day:%b} {day.day}, {day.year}"


def group_by_day(
    messages: Iterable[Message],
    now: datetime | None = None,
) -> Iterator[tuple[str, list[Message]]]:
    """Yield ``(label, messages)`` per calendar day, oldest first.

    Days are computed in ``now``'s timezone (local time when omitted), and
    labels are relative to ``now``; nothing here is cached.
    """
    now = now or datetime.now().astimezone()
    tz = now.tzinfo
    today = now.date()

    current_day: date | None = None
    bucket: list[Message] = []
    for msg in messages:
        day = msg.created_at.astimezone(tz).date()
        if day != current_day and bucket:
            yield day_label(current_day, today), bucket  # type: ignore[arg-type]
            bucket = []
        current_day = day
        bucket.append(msg)
    if bucket:
        yield day_label(current_day, today), bucket  # type: ignore[arg-type]


# ── Mutable holder ───────────────────────────────────────────────────────────

StoreListener = Callable[["MessageStore"], None]


class MessageStore:
    """Authoritative ordered message list for the open conversation."""

    def __init__(self, messages: Iterable[Message | Mapping[str, Any]] = ()) -> None:
        self._state = build_state(messages)
        self._listeners: list[StoreListener] = []

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._state.messages

    def __len__(self) -> int:
        return len(self._state.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._state.messages)

    def __contains__(self, message_id: object) -> bool:
        return isinstance(message_id, str) and self._state.index_of(message_id) is not None

    def get(self, message_id: str | None) -> Message | None:
        if not message_id:
            return None
        return self._state.get(message_id)

    def latest(self) -> Message | None:
        return self._state.messages[-1] if self._state.messages else None

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change callback. Returns a function that removes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _commit(self, state: StoreState) -> bool:
        if state is self._state:
            return False
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Store listener failed")
        return True

    def apply_insert(self, row: Message | Mapping[str, Any]) -> bool:
        message = coerce_message(row)
        if message is None:
            return False
        return self._commit(apply_insert(self._state, message))

    def apply_update(self, row: Message | Mapping[str, Any]) -> bool:
        message = coerce_message(row)
        if message is None:
            return False
        return self._commit(apply_update(self._state, message))

    def apply_delete(self, message_id: str) -> bool:
        return self._commit(apply_delete(self._state, message_id))

    def apply_event(self, event: FeedEvent) -> bool:
        return self._commit(reduce(self._state, event))

    def apply_local(self, message: Message) -> bool:
        """Replace a record wholesale (optimistic writes and their rollback).

        Unlike ``apply_update`` this does not union ``seen_by``; it is only
        used with records derived from what the store already holds.
        """
        i = self._state.index_of(message.id)
        if i is None:
            return self._commit(apply_insert(self._state, message))
        remaining = self._state.messages[:i] + self._state.messages[i + 1:]
        return self._commit(StoreState(_insert_sorted(remaining, message)))

    def replace_all(self, rows: Iterable[Message | Mapping[str, Any]]) -> None:
        """Swap in a freshly fetched collection (resync after a feed gap)."""
        state = build_state(rows)
        if state.messages == self._state.messages:
            return
        self._commit(state)

    def group_by_day(self, now: datetime | None = None) -> Iterator[tuple[str, list[Message]]]:
        return group_by_day(self._state.messages, now)
