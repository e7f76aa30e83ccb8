"""Loguru setup shared by the chat client and the reference backend.

Modules import ``logger`` from here. Entry points (``huddle watch``, the
FastAPI app) call ``setup_logging()`` once; later calls are ignored.

The backend passes ``intercept_stdlib=True`` so uvicorn, SQLAlchemy and
websockets log records end up in the same sinks.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from loguru import logger

__all__ = ["InterceptHandler", "logger", "setup_logging"]

_DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent / "data"

LOG_LEVEL = os.environ.get("HUDDLE_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.environ.get("HUDDLE_LOG_FILE", str(_DEFAULT_LOG_DIR / "huddle.log"))

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Chatty at INFO, useless for us unless something breaks
QUIET_LOGGERS = ("httpcore", "httpx", "websockets", "aiosqlite")

_configured = False


class InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    level: str | None = None,
    log_file: str | Path | None = None,
    *,
    intercept_stdlib: bool = False,
) -> None:
    """Install a colorized stderr sink and a rotated DEBUG file sink."""
    global _configured
    if _configured:
        return
    _configured = True

    level = (level or LOG_LEVEL).upper()
    log_path = Path(log_file or LOG_FILE)

    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(log_path),
        level="DEBUG",
        format=FILE_FORMAT,
        rotation="10 MB",
        retention="7 days",
        compression="gz",
        encoding="utf-8",
    )

    if intercept_stdlib:
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging ready | level={} | file={}", level, log_path)
