"""Huddle reference backend.

Stands in for the hosted service the chat client talks to: a message table
with row-level rules, a typing table, profiles, file storage with public
URLs, and a WebSocket change feed that announces every committed write.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from huddle.log import logger, setup_logging

from backend.app.config import settings

# Sinks first, so import-time log lines from the modules below are kept.
setup_logging(
    settings.log_level,
    settings.data_dir / "huddle-server.log",
    intercept_stdlib=True,
)

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from sqlalchemy import text  # noqa: E402

from backend.app.api.messages import router as messages_router  # noqa: E402
from backend.app.api.presence import router as presence_router  # noqa: E402
from backend.app.api.storage import public_router as storage_public_router  # noqa: E402
from backend.app.api.storage import router as storage_router  # noqa: E402
from backend.app.api.ws import router as ws_router  # noqa: E402
from backend.app.db import engine, init_db  # noqa: E402
from backend.app.services.ws_manager import ws_manager  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()
    settings.storage_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Huddle backend up, public files at {}/storage", settings.base_url)
    yield
    await ws_manager.close_all()
    await engine.dispose()


app = FastAPI(
    title="Huddle",
    description="Group chat backend: messages, change feed, typing presence, file storage",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", f"http://localhost:{settings.port}"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback, hand the client a plain JSON 500."""
    logger.exception("Unhandled exception on {} {}", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(messages_router, prefix="/api")
app.include_router(presence_router, prefix="/api")
app.include_router(storage_router, prefix="/api")
app.include_router(storage_public_router)  # public file URLs, no /api prefix
app.include_router(ws_router)  # change feed at /ws


@app.get("/api/health")
async def health() -> dict[str, str]:
    db_state = "ok"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        db_state = "error"
        logger.exception("Health check: database unreachable")

    return {
        "status": "ok" if db_state == "ok" else "degraded",
        "database": db_state,
        "ws_clients": str(ws_manager.active_count),
    }
