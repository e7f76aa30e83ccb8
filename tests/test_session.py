"""End-to-end tests for a chat session over in-memory collaborators."""

from datetime import timedelta

import pytest
from conftest import ALICE, BOB, CAROL, T0, FakeBackend, FakeFeed, make_message, wait_until

from huddle.errors import PersistenceError
from huddle.models import DELETED_PLACEHOLDER, Profile
from huddle.render import body_text
from huddle.session import ChatSession


def _row(message_id: str, user_id: str = BOB, seconds: int = 0, **fields) -> dict:
    msg = make_message(
        message_id,
        user_id=user_id,
        created_at=T0 - timedelta(minutes=10) + timedelta(seconds=seconds),
        **fields,
    )
    return msg.model_dump(mode="json")


@pytest.fixture
async def session(backend: FakeBackend, feed: FakeFeed, fast_settings):
    backend.seed(_row("b1", content="morning all"))
    s = ChatSession(ALICE, backend, feed, settings=fast_settings)
    await s.open()
    yield s
    await s.close()


async def test_open_loads_history_after_subscribing(session, feed):
    assert feed.subscriptions == 1
    assert [m.id for m in session.store] == ["b1"]


async def test_latest_message_is_marked_seen_on_open(session, backend):
    await wait_until(lambda: ALICE in backend.rows["b1"]["seen_by"])
    await wait_until(lambda: ALICE in session.store.get("b1").seen_by)


async def test_sent_message_arrives_through_the_feed(session, backend):
    await session.on_input("hello")
    assert await session.send()

    await wait_until(lambda: "srv-1" in session.store)
    msg = session.store.get("srv-1")
    assert msg.content == "hello"
    assert msg.user_id == ALICE
    assert msg.seen_by == [ALICE]
    assert msg.reactions == []
    assert session.store.latest().id == "srv-1"
    assert session.composer.draft.content == ""


async def test_empty_send_posts_notice_and_changes_nothing(session, backend):
    before = session.store.messages

    assert not await session.send()

    assert backend.inserts == []
    assert session.store.messages == before
    assert session.notices[-1].level == "error"
    assert session.notices[-1].text == "Type a message or attach a file"


async def test_failed_insert_posts_notice(session, backend):
    backend.fail_inserts = True
    await session.on_input("hello")

    assert not await session.send()
    assert session.notices[-1].text == "Failed to send message"
    assert session.composer.draft.content == "hello"


async def test_reply_to_missing_message_is_rejected(session, backend):
    await session.on_input("replying")
    session.reply_to("does-not-exist")

    assert not await session.send()
    assert backend.inserts == []


async def test_reaction_is_applied_optimistically_and_confirmed(session, backend):
    backend.echo_updates = False

    assert await session.react("b1", "🔥")

    assert session.store.get("b1").reaction("🔥").user_ids == [ALICE]
    assert backend.updates[-1] == ("b1", {"reactions": [{"emoji": "🔥", "user_ids": [ALICE]}]})


async def test_failed_reaction_is_rolled_back(session, backend):
    backend.fail_updates = True

    assert not await session.react("b1", "🔥")

    assert session.store.get("b1").reactions == []
    assert session.notices[-1].text == "Failed to react"


async def test_feed_update_wins_over_rollback(session, backend, monkeypatch):
    async def peer_write_then_fail(message_id, changes):
        # a peer's write reaches us through the feed while ours is in flight
        peer_row = {
            **backend.rows[message_id],
            "reactions": [{"emoji": "👍", "user_ids": [CAROL]}],
        }
        session.store.apply_update(peer_row)
        raise PersistenceError("conflict", status_code=409)

    monkeypatch.setattr(backend, "update_message", peer_write_then_fail)

    assert not await session.react("b1", "🔥")

    msg = session.store.get("b1")
    assert msg.reaction("👍").user_ids == [CAROL]
    assert msg.reaction("🔥") is None


async def test_reacting_to_unknown_message_posts_notice(session):
    assert not await session.react("nope", "👍")
    assert session.notices[-1].text == "Message not found"


async def test_edit_own_message(session, backend):
    await session.on_input("tpyo")
    await session.send()
    await wait_until(lambda: "srv-1" in session.store)

    assert await session.edit("srv-1", "typo")

    await wait_until(lambda: session.store.get("srv-1").edited)
    assert session.store.get("srv-1").content == "typo"


async def test_cannot_edit_or_delete_others_messages(session, backend):
    assert not await session.edit("b1", "hijacked")
    assert not await session.delete("b1")

    assert session.store.get("b1").content == "morning all"
    for _, changes in backend.updates:
        assert "content" not in changes
        assert "is_deleted" not in changes


async def test_edit_to_blank_is_rejected(session):
    await session.on_input("hi")
    await session.send()
    await wait_until(lambda: "srv-1" in session.store)

    assert not await session.edit("srv-1", "   ")
    assert session.notices[-1].text == "Message cannot be empty"


async def test_soft_delete_keeps_message_with_placeholder(session):
    await session.on_input("oops")
    await session.send()
    await wait_until(lambda: "srv-1" in session.store)

    assert await session.delete("srv-1")

    await wait_until(lambda: session.store.get("srv-1").is_deleted)
    assert body_text(session.store.get("srv-1")) == DELETED_PLACEHOLDER
    assert session.notices[-1].text == "Message deleted"
    assert session.notices[-1].level == "info"


async def test_peer_insert_and_hard_delete_arrive_via_feed(session, feed):
    feed.publish("INSERT", new=_row("b2", seconds=5, content="new"))
    await wait_until(lambda: "b2" in session.store)

    feed.publish("DELETE", old={"id": "b2"})
    await wait_until(lambda: "b2" not in session.store)


async def test_disconnect_triggers_notice_and_resync(session, backend, feed):
    # written while the feed is down: never delivered as an event
    backend.seed(_row("b9", seconds=30, content="missed"))
    feed.drop()

    await wait_until(lambda: session.listener.resync_count >= 2)
    await wait_until(lambda: "b9" in session.store)
    assert feed.subscriptions >= 2
    assert any(n.text == "Reconnecting to chat..." for n in session.notices)


async def test_typists_use_display_names(session, backend):
    backend.profiles = [Profile(id=BOB, username="bob", full_name="Bob Stone")]
    await session.refresh_profiles()
    now = T0
    backend.typing = {
        BOB: now - timedelta(seconds=1),
        CAROL: now - timedelta(seconds=10),
        ALICE: now,
    }

    await session.refresh_typing()

    assert session.typists(now) == ["Bob Stone"]
    assert session.typing_line(now) == "Bob Stone typing..."
    assert session.name_of(CAROL) == CAROL


async def test_close_unsubscribes_and_clears_typing(backend, feed, fast_settings):
    notices = []
    s = ChatSession(ALICE, backend, feed, settings=fast_settings, on_notice=notices.append)
    async with s:
        await s.on_input("typing...")
        assert feed.active == 1
        assert backend.typing[ALICE] is not None

    assert feed.active == 0
    assert backend.typing[ALICE] is None
    assert not s.listener.running


async def test_close_finishes_teardown_when_listener_stop_fails(
    backend, feed, fast_settings, monkeypatch
):
    s = ChatSession(ALICE, backend, feed, settings=fast_settings)
    await s.open()
    await s.on_input("typing...")
    pollers = list(s._tasks)
    assert pollers

    real_stop = s.listener.stop

    async def broken_stop():
        await real_stop()
        raise RuntimeError("listener crashed")

    monkeypatch.setattr(s.listener, "stop", broken_stop)
    with pytest.raises(RuntimeError):
        await s.close()

    assert all(task.done() for task in pollers)
    assert not s._tasks
    assert not s.typing.pending
    assert backend.typing[ALICE] is None
    assert backend.online[ALICE] is False


async def test_online_status_follows_session_lifetime(backend, feed, fast_settings):
    backend.online[BOB] = True
    s = ChatSession(ALICE, backend, feed, settings=fast_settings)

    async with s:
        assert backend.online[ALICE] is True
        assert s.is_online(BOB)
        assert s.is_online(ALICE)
        assert not s.is_online(CAROL)

    assert backend.online[ALICE] is False


async def test_status_failure_keeps_profiles(backend, feed, fast_settings, monkeypatch):
    backend.profiles = [Profile(id=BOB, username="bob")]

    async def unavailable():
        raise PersistenceError("no status table", status_code=404)

    monkeypatch.setattr(backend, "list_status", unavailable)
    s = ChatSession(ALICE, backend, feed, settings=fast_settings)
    async with s:
        assert s.name_of(BOB) == "bob"
        assert not s.is_online(BOB)


async def test_two_sessions_do_not_share_state(backend, fast_settings):
    feed_a, feed_b = FakeFeed(), FakeFeed()
    backend.seed(_row("b1"))
    a = ChatSession(ALICE, backend, feed_a, settings=fast_settings)
    b = ChatSession(CAROL, backend, feed_b, settings=fast_settings)

    async with a, b:
        feed_a.publish("INSERT", new=_row("only-a", seconds=1))
        await wait_until(lambda: "only-a" in a.store)
        assert "only-a" not in b.store
        assert a.store is not b.store
