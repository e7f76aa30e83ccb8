"""Tests for typing presence and the debounced typing notifier."""

import asyncio
from datetime import timedelta

from conftest import ALICE, BOB, CAROL, T0, FakeBackend, wait_until

from huddle.errors import PersistenceError
from huddle.models import PresenceEntry
from huddle.presence import PresenceTracker, TypingNotifier

DAVE = "user-dave"


def test_freshness_window_is_exclusive():
    tracker = PresenceTracker(freshness_window=6)
    tracker.record_typing(BOB, T0)

    assert tracker.is_active(BOB, T0 + timedelta(seconds=5.9))
    assert not tracker.is_active(BOB, T0 + timedelta(seconds=6))
    assert tracker.active_typists(now=T0 + timedelta(seconds=6)) == []


def test_cleared_and_unknown_users_are_inactive():
    tracker = PresenceTracker()
    tracker.record_typing(BOB, T0)
    tracker.clear_typing(BOB)

    assert not tracker.is_active(BOB, T0)
    assert not tracker.is_active("nobody", T0)


def test_active_typists_excludes_self_and_orders_recent_first():
    tracker = PresenceTracker()
    tracker.load(
        [
            PresenceEntry(user_id=ALICE, last_typing_at=T0),
            PresenceEntry(user_id=BOB, last_typing_at=T0 - timedelta(seconds=2)),
            PresenceEntry(user_id=CAROL, last_typing_at=T0 - timedelta(seconds=1)),
            PresenceEntry(user_id=DAVE, last_typing_at=None),
        ]
    )

    assert tracker.active_typists(exclude=ALICE, now=T0) == [CAROL, BOB]


def test_active_typists_is_capped():
    tracker = PresenceTracker(display_cap=3)
    for i, uid in enumerate([ALICE, BOB, CAROL, DAVE]):
        tracker.record_typing(uid, T0 - timedelta(seconds=i))

    assert tracker.active_typists(now=T0) == [ALICE, BOB, CAROL]
    assert tracker.active_typists(now=T0, limit=10) == [ALICE, BOB, CAROL, DAVE]


def test_ties_break_on_user_id():
    tracker = PresenceTracker()
    tracker.record_typing(CAROL, T0)
    tracker.record_typing(BOB, T0)
    assert tracker.active_typists(now=T0) == [BOB, CAROL]


def test_load_replaces_snapshot():
    tracker = PresenceTracker()
    tracker.record_typing(BOB, T0)
    tracker.load([PresenceEntry(user_id=CAROL, last_typing_at=T0)])
    assert not tracker.is_active(BOB, T0)
    assert tracker.active_typists(now=T0) == [CAROL]


async def test_notifier_clears_after_idle():
    backend = FakeBackend()
    notifier = TypingNotifier(backend, ALICE, idle=0.05)

    await notifier.touch()
    assert backend.typing[ALICE] is not None
    assert notifier.pending

    await wait_until(lambda: backend.typing[ALICE] is None)
    assert not notifier.pending


async def test_keystrokes_restart_the_idle_timer():
    backend = FakeBackend()
    notifier = TypingNotifier(backend, ALICE, idle=0.15)

    for _ in range(4):
        await notifier.touch()
        await asyncio.sleep(0.05)
    # 200 ms since the first keystroke, 50 ms since the last
    assert backend.typing[ALICE] is not None
    assert notifier.pending

    await wait_until(lambda: backend.typing[ALICE] is None)


async def test_stop_clears_immediately():
    backend = FakeBackend()
    notifier = TypingNotifier(backend, ALICE, idle=60)

    await notifier.touch()
    await notifier.stop()

    assert backend.typing[ALICE] is None
    assert not notifier.pending


async def test_backend_failures_are_swallowed():
    class Failing(FakeBackend):
        async def upsert_typing(self, user_id, at):
            raise PersistenceError("presence table offline")

    notifier = TypingNotifier(Failing(), ALICE, idle=0.01)
    await notifier.touch()
    await notifier.stop()
