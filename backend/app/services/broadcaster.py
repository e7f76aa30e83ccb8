"""Change-feed event helpers.

Services call ``broadcast_change`` after a successful commit; the event is
pushed to every WebSocket client subscribed to the table. Payloads mirror
the hosted backend's change notifications: ``new`` carries the row after
the change, ``old`` the row before it (only the id for deletes).
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from backend.app.services.ws_manager import ws_manager

logger = logging.getLogger(__name__)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


def change_event(
    event_type: ChangeType,
    table: str,
    new: dict[str, Any] | None = None,
    old: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a row-change WebSocket event."""
    return {"type": event_type, "table": table, "new": new, "old": old}


async def broadcast_change(
    event_type: ChangeType,
    table: str,
    new: dict[str, Any] | None = None,
    old: dict[str, Any] | None = None,
) -> None:
    """Push a change event to subscribers. Never raises."""
    try:
        await ws_manager.broadcast(change_event(event_type, table, new, old))
    except Exception:
        logger.exception("Failed to broadcast %s on %s", event_type, table)
