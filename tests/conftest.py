"""Shared test fixtures for Huddle.

Provides an isolated in-memory SQLite database per test and an async HTTP
client wired to the real ASGI app, plus in-memory fakes of the backend
contracts (store, presence, storage, change feed) for the chat core.
"""

import asyncio
import os
import tempfile
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

# Keep the app's data dir (file DB, logs, storage) out of the repo.
os.environ.setdefault("HUDDLE_DATA_DIR", tempfile.mkdtemp(prefix="huddle-test-"))

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from backend.app.db import Base, get_db  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.models.message import Message as MessageRow  # noqa: E402
from backend.app.models.profile import Profile as ProfileRow  # noqa: E402
from huddle.config import ClientSettings  # noqa: E402
from huddle.errors import AttachmentUploadError, FeedDisconnect, PersistenceError  # noqa: E402
from huddle.models import FeedEvent, Message, OnlineStatus, PresenceEntry, Profile  # noqa: E402

ALICE = "user-alice"
BOB = "user-bob"
CAROL = "user-carol"

T0 = datetime(2025, 10, 20, 12, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

# In-memory engine shared across a test session.  Each test gets its own
# tables (created/dropped per test function) so tests are fully isolated.
_test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    connect_args={"check_same_thread": False},
)

_TestSessionLocal = async_sessionmaker(
    _test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def _set_test_pragmas(dbapi_conn, connection_record):  # noqa: ARG001
    """Set SQLite PRAGMAs on every test connection (mirrors production behavior)."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


event.listen(_test_engine.sync_engine, "connect", _set_test_pragmas)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop them after."""
    async with _test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with _test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean async database session for a test."""
    async with _TestSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client with the test DB injected into the FastAPI app."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        # Reuse the same session so test data is visible to the app
        yield db

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def _now() -> str:
    return datetime.now(UTC).isoformat()


async def create_message_row(
    db: AsyncSession,
    *,
    user_id: str = ALICE,
    content: str = "Hello, world!",
    reply_to: str | None = None,
    created_at: str | None = None,
    reactions: list | None = None,
    seen_by: list | None = None,
) -> MessageRow:
    """Create and persist a message row directly (bypasses the feed)."""
    stamp = created_at or _now()
    msg = MessageRow(
        id=str(uuid.uuid4()),
        user_id=user_id,
        content=content,
        reply_to=reply_to,
        created_at=stamp,
        updated_at=stamp,
        reactions=reactions or [],
        seen_by=seen_by if seen_by is not None else [user_id],
    )
    db.add(msg)
    await db.flush()
    return msg


async def create_profile(
    db: AsyncSession,
    *,
    user_id: str = ALICE,
    username: str = "alice",
    full_name: str | None = None,
) -> ProfileRow:
    profile = ProfileRow(id=user_id, username=username, full_name=full_name, created_at=_now())
    db.add(profile)
    await db.flush()
    return profile


def make_message(
    message_id: str = "m1",
    *,
    user_id: str = ALICE,
    content: str = "hi",
    created_at: datetime | None = None,
    **fields: Any,
) -> Message:
    """Build a core Message without touching any backend."""
    return Message(
        id=message_id,
        user_id=user_id,
        content=content,
        created_at=created_at or T0,
        seen_by=fields.pop("seen_by", [user_id]),
        **fields,
    )


# ---------------------------------------------------------------------------
# In-memory collaborators for the chat core
# ---------------------------------------------------------------------------

_DISCONNECT = object()


class FakeFeed:
    """Change feed that tests drive by hand."""

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue] = []
        self.subscriptions = 0

    @property
    def active(self) -> int:
        return len(self._queues)

    @asynccontextmanager
    async def subscribe(self, tables: Iterable[str]) -> AsyncIterator[AsyncIterator[FeedEvent]]:
        self.subscriptions += 1
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            yield self._events(queue)
        finally:
            self._queues.remove(queue)

    async def _events(self, queue: asyncio.Queue) -> AsyncIterator[FeedEvent]:
        while True:
            item = await queue.get()
            if item is _DISCONNECT:
                raise FeedDisconnect("connection dropped")
            yield item

    def publish(self, event_type: str, new: dict | None = None, old: dict | None = None) -> None:
        evt = FeedEvent(event_type=event_type, table="messages", new=new, old=old)
        for queue in list(self._queues):
            queue.put_nowait(evt)

    def drop(self) -> None:
        for queue in list(self._queues):
            queue.put_nowait(_DISCONNECT)


class FakeBackend:
    """Implements the store/presence/profile/storage contracts in memory.

    Writes are echoed on the attached FakeFeed like the real backend does.
    """

    def __init__(self, feed: FakeFeed | None = None) -> None:
        self.feed = feed
        self.rows: dict[str, dict[str, Any]] = {}
        self.typing: dict[str, datetime | None] = {}
        self.profiles: list[Profile] = []
        self.online: dict[str, bool] = {}
        self.uploads: dict[str, bytes] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.inserts: list[dict[str, Any]] = []
        self.fail_inserts = False
        self.fail_updates = False
        self.fail_uploads = False
        self.echo_updates = True
        self._seq = 0

    def seed(self, *rows: dict[str, Any]) -> None:
        for row in rows:
            self.rows[row["id"]] = dict(row)

    def _publish(self, event_type: str, new: dict | None = None, old: dict | None = None) -> None:
        if self.feed is not None:
            self.feed.publish(event_type, new=new, old=old)

    async def select_messages(
        self,
        *,
        ascending: bool = True,
        limit: int | None = None,
        offset: int = 0,
        user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        rows = [r for r in self.rows.values() if user_id is None or r["user_id"] == user_id]
        rows.sort(key=lambda r: (str(r["created_at"]), r["id"]), reverse=not ascending)
        rows = rows[offset:]
        return [dict(r) for r in (rows[:limit] if limit is not None else rows)]

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        row = self.rows.get(message_id)
        return dict(row) if row else None

    async def insert_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.fail_inserts:
            raise PersistenceError("insert rejected", status_code=500)
        self._seq += 1
        row = {
            **payload,
            "id": f"srv-{self._seq}",
            "created_at": (T0 + timedelta(seconds=self._seq)).isoformat(),
        }
        self.rows[row["id"]] = row
        self.inserts.append(dict(payload))
        self._publish("INSERT", new=dict(row))
        return dict(row)

    async def update_message(self, message_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        self.updates.append((message_id, changes))
        if self.fail_updates:
            raise PersistenceError("update rejected", status_code=500)
        row = self.rows[message_id]
        old = dict(row)
        row.update(changes)
        if self.echo_updates:
            self._publish("UPDATE", new=dict(row), old=old)
        return dict(row)

    async def delete_message(self, message_id: str) -> None:
        self.rows.pop(message_id, None)
        self._publish("DELETE", old={"id": message_id})

    async def upsert_typing(self, user_id: str, at: datetime | None) -> None:
        self.typing[user_id] = at

    async def list_typing(self) -> list[PresenceEntry]:
        return [PresenceEntry(user_id=u, last_typing_at=t) for u, t in self.typing.items()]

    async def list_profiles(self) -> list[Profile]:
        return list(self.profiles)

    async def list_status(self) -> list[OnlineStatus]:
        return [OnlineStatus(user_id=u, online=o) for u, o in self.online.items()]

    async def set_online(self, user_id: str, online: bool) -> None:
        self.online[user_id] = online

    async def upload(self, path: str, data: bytes, content_type: str = "") -> str:
        if self.fail_uploads:
            raise AttachmentUploadError("bucket unavailable")
        self.uploads[path] = data
        return path

    def public_url(self, stored_path: str) -> str:
        return f"https://files.test/chat-attachments/{stored_path}"


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def backend(feed: FakeFeed) -> FakeBackend:
    return FakeBackend(feed)


@pytest.fixture
def fast_settings() -> ClientSettings:
    """Client settings with pollers effectively idle and short timers."""
    return ClientSettings(
        typing_idle=0.05,
        typing_poll_interval=3600,
        seen_poll_interval=3600,
        reconnect_delay=0.01,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
