"""WebSocket change feed.

Clients connect at /ws and subscribe to tables. After every committed write
they receive the row change.

Protocol:
  Client -> Server (JSON):
    {"action": "subscribe", "tables": ["messages", "typing"]}
    {"action": "unsubscribe", "tables": ["typing"]}
    {"action": "ping"}

  Server -> Client (JSON):
    {"type": "INSERT", "table": "messages", "new": {...row...}, "old": null}
    {"type": "UPDATE", "table": "messages", "new": {...row...}, "old": {...row...}}
    {"type": "DELETE", "table": "messages", "new": null, "old": {"id": "..."}}
    {"type": "subscribed", "data": {"tables": [...]}}
    {"type": "unsubscribed", "data": {"tables": [...]}}
    {"type": "pong"}
    {"type": "error", "data": {"message": "..."}}
"""

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from backend.app.services.ws_manager import ws_manager

router = APIRouter()

FEED_TABLES = frozenset({"messages", "typing"})


async def _send(ws: WebSocket, payload: dict) -> None:
    await ws.send_text(json.dumps(payload))


async def _error(ws: WebSocket, message: str) -> None:
    await _send(ws, {"type": "error", "data": {"message": message}})


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket) -> None:
    """Change feed endpoint."""
    conn_id = await ws_manager.accept(ws, user_id=ws.headers.get("x-user-id"))

    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await _error(ws, "Invalid JSON")
                continue

            action = msg.get("action", "") if isinstance(msg, dict) else ""

            if action in ("subscribe", "unsubscribe"):
                tables = msg.get("tables", [])
                if not isinstance(tables, list):
                    await _error(ws, "tables must be a list")
                    continue
                unknown = sorted(set(tables) - FEED_TABLES)
                if unknown:
                    await _error(ws, f"Unknown tables: {', '.join(unknown)}")
                    continue
                if action == "subscribe":
                    ws_manager.subscribe(ws, tables)
                else:
                    ws_manager.unsubscribe(ws, tables)
                await _send(ws, {"type": f"{action}d", "data": {"tables": tables}})

            elif action == "ping":
                await _send(ws, {"type": "pong"})

            else:
                await _error(ws, f"Unknown action: {action}")

    except WebSocketDisconnect:
        logger.info("WS client {} disconnected normally", conn_id)
    except Exception:
        logger.exception("WS error for client {}", conn_id)
    finally:
        ws_manager.disconnect(ws)
