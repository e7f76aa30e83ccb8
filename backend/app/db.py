from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from backend.app.config import DATA_DIR, DATABASE_URL


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _set_sqlite_pragmas(dbapi_conn, connection_record):  # noqa: ARG001
    """Apply SQLite PRAGMAs on every new connection from the pool.

    SQLite PRAGMAs are per-connection, so they must be set every time a new
    connection is opened, not just once at startup.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.execute("PRAGMA synchronous = NORMAL")
    cursor.close()


event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)


async def get_db() -> AsyncSession:
    """FastAPI dependency for database sessions."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create tables if they don't exist."""
    import backend.app.models  # noqa: F401  registers the tables

    DATA_DIR.mkdir(parents=True, exist_ok=True)
    logger.info("Initializing database: {}", DATABASE_URL)

    async with engine.begin() as conn:
        # WAL is database-level, so it only needs setting once.
        await conn.exec_driver_sql("PRAGMA journal_mode = WAL")
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database ready")
