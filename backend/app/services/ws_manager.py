"""WebSocket connection manager for the change feed.

Tracks connected WebSocket clients and pushes row-change events to them.
Clients subscribe to tables; a client only receives events for tables it
has subscribed to.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger(__name__)


@dataclass
class WSClient:
    """A connected WebSocket client with its table subscriptions."""

    ws: WebSocket
    user_id: str | None = None
    subscribed_tables: set[str] = field(default_factory=set)


class ConnectionManager:
    """Manages WebSocket connections and fans out change events.

    Safe for async usage within a single event loop (FastAPI).
    """

    def __init__(self) -> None:
        # Map of connection_id -> WSClient
        self._clients: dict[int, WSClient] = {}

    @property
    def active_count(self) -> int:
        return len(self._clients)

    async def accept(self, ws: WebSocket, user_id: str | None = None) -> int:
        """Accept a new WebSocket connection and return its connection ID."""
        await ws.accept()
        conn_id = id(ws)
        self._clients[conn_id] = WSClient(ws=ws, user_id=user_id)
        logger.info("WS client connected: %s (user=%s)", conn_id, user_id)
        return conn_id

    def disconnect(self, ws: WebSocket) -> None:
        """Remove a WebSocket connection."""
        conn_id = id(ws)
        if conn_id in self._clients:
            del self._clients[conn_id]
            logger.info("WS client disconnected: %s", conn_id)

    def subscribe(self, ws: WebSocket, tables: list[str]) -> None:
        client = self._clients.get(id(ws))
        if client:
            client.subscribed_tables.update(tables)
            logger.debug("WS %s subscribed to tables: %s", id(ws), tables)

    def unsubscribe(self, ws: WebSocket, tables: list[str]) -> None:
        client = self._clients.get(id(ws))
        if client:
            client.subscribed_tables -= set(tables)

    async def broadcast(self, event: dict) -> None:
        """Send a change event to every client subscribed to its table."""
        table = event.get("table", "")
        payload = json.dumps(event)
        dead: list[int] = []

        for conn_id, client in list(self._clients.items()):
            if table not in client.subscribed_tables:
                continue
            try:
                if client.ws.client_state == WebSocketState.CONNECTED:
                    await client.ws.send_text(payload)
                else:
                    dead.append(conn_id)
            except Exception:
                logger.warning("Failed to send to WS %s, removing", conn_id)
                dead.append(conn_id)

        # Clean up dead connections
        for conn_id in dead:
            self._clients.pop(conn_id, None)

    async def close_all(self) -> None:
        """Close all connections gracefully (for shutdown)."""
        for client in self._clients.values():
            try:
                if client.ws.client_state == WebSocketState.CONNECTED:
                    await client.ws.close(code=1001, reason="Server shutting down")
            except Exception:
                logger.debug("Error closing WS during shutdown", exc_info=True)
        self._clients.clear()


# Singleton instance used by the FastAPI process
ws_manager = ConnectionManager()
