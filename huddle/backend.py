"""Collaborator contracts and their network implementations.

The chat core never talks to a database directly. It needs five things from
the hosted backend, described here as Protocols:

- MessageRepository: select/get/insert/update/delete on the messages table
- PresenceRepository: upsert and list typing timestamps
- ProfileRepository: list public profiles (for display names) and online status
- FileStorage: upload bytes, turn a stored path into a public URL
- ChangeFeed: subscribe to insert/update/delete notifications

``HttpBackend`` implements the first four over the REST API served by
``backend.app``; ``WebSocketFeed`` implements the change feed over ``/ws``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import AttachmentUploadError, FeedDisconnect, PersistenceError
from .log import logger
from .models import FeedEvent, OnlineStatus, PresenceEntry, Profile

USER_HEADER = "X-User-Id"


class MessageRepository(Protocol):
    async def select_messages(
        self,
        *,
        ascending: bool = True,
        limit: int | None = None,
        offset: int = 0,
        user_id: str | None = None,
    ) -> list[dict[str, Any]]: ...

    async def get_message(self, message_id: str) -> dict[str, Any] | None: ...

    async def insert_message(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_message(self, message_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...

    async def delete_message(self, message_id: str) -> None: ...


class PresenceRepository(Protocol):
    async def upsert_typing(self, user_id: str, at: datetime | None) -> None: ...

    async def list_typing(self) -> list[PresenceEntry]: ...


class ProfileRepository(Protocol):
    async def list_profiles(self) -> list[Profile]: ...

    async def list_status(self) -> list[OnlineStatus]: ...

    async def set_online(self, user_id: str, online: bool) -> None: ...


class FileStorage(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str = ...) -> str: ...

    def public_url(self, stored_path: str) -> str: ...


class ChatBackend(MessageRepository, PresenceRepository, ProfileRepository, FileStorage, Protocol):
    """Everything a chat session needs besides the feed."""


class ChangeFeed(Protocol):
    def subscribe(
        self, tables: Iterable[str]
    ) -> AbstractAsyncContextManager[AsyncIterator[FeedEvent]]: ...


# ── REST implementation ──────────────────────────────────────────────────────


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class HttpBackend:
    """REST client for the authoritative store, presence, profiles and storage."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        bucket: str = "chat-attachments",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.user_id = user_id
        self.bucket = bucket
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._public_base = str(self._client.base_url).rstrip("/") or base_url.rstrip("/")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpBackend:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {USER_HEADER: self.user_id, **kwargs.pop("headers", {})}
        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("{} {} failed: {}", method, path, exc)
            raise PersistenceError(f"Backend unreachable: {exc}") from exc
        if resp.status_code >= 400:
            detail = _error_detail(resp)
            logger.warning("{} {} -> {} {}", method, path, resp.status_code, detail)
            raise PersistenceError(detail, status_code=resp.status_code)
        return resp

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._request(method, path, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            logger.warning("{} {} returned a non-JSON body", method, path)
            raise PersistenceError(
                f"Unreadable response from {path}", status_code=resp.status_code
            ) from exc

    async def _json_rows(self, path: str, **kwargs: Any) -> list[dict[str, Any]]:
        body = await self._json("GET", path, **kwargs)
        if not isinstance(body, list):
            raise PersistenceError(f"Expected a list from {path}")
        return body

    # --- messages ---

    async def select_messages(
        self,
        *,
        ascending: bool = True,
        limit: int | None = None,
        offset: int = 0,
        user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"order": "asc" if ascending else "desc", "offset": offset}
        if limit is not None:
            params["limit"] = limit
        if user_id is not None:
            params["user_id"] = user_id
        return await self._json_rows("/api/messages", params=params)

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        try:
            return await self._json("GET", f"/api/messages/{message_id}")
        except PersistenceError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def insert_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._json("POST", "/api/messages", json=payload)

    async def update_message(self, message_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return await self._json("PATCH", f"/api/messages/{message_id}", json=changes)

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/api/messages/{message_id}")

    # --- presence ---

    async def upsert_typing(self, user_id: str, at: datetime | None) -> None:
        await self._request(
            "PUT",
            "/api/typing",
            json={"user_id": user_id, "last_typing_at": at.isoformat() if at else None},
        )

    async def list_typing(self) -> list[PresenceEntry]:
        rows = await self._json_rows("/api/typing")
        try:
            return [PresenceEntry.model_validate(row) for row in rows]
        except PydanticValidationError as exc:
            raise PersistenceError(f"Malformed typing rows: {exc}") from exc

    # --- profiles ---

    async def list_profiles(self) -> list[Profile]:
        rows = await self._json_rows("/api/profiles")
        try:
            return [Profile.model_validate(row) for row in rows]
        except PydanticValidationError as exc:
            raise PersistenceError(f"Malformed profile rows: {exc}") from exc

    async def list_status(self) -> list[OnlineStatus]:
        rows = await self._json_rows("/api/status")
        try:
            return [OnlineStatus.model_validate(row) for row in rows]
        except PydanticValidationError as exc:
            raise PersistenceError(f"Malformed status rows: {exc}") from exc

    async def set_online(self, user_id: str, online: bool) -> None:
        await self._request("PUT", "/api/status", json={"user_id": user_id, "online": online})

    # --- storage ---

    async def upload(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        try:
            body = await self._json(
                "POST",
                f"/api/storage/{self.bucket}/{quote(path)}",
                content=data,
                headers={"Content-Type": content_type},
            )
        except PersistenceError as exc:
            raise AttachmentUploadError(f"Upload failed: {exc}") from exc
        stored = body.get("path") if isinstance(body, dict) else None
        if not isinstance(stored, str) or not stored:
            raise AttachmentUploadError("Upload failed: storage did not return a path")
        return stored

    def public_url(self, stored_path: str) -> str:
        return f"{self._public_base}/storage/{self.bucket}/{quote(stored_path)}"


# ── Change feed over WebSocket ───────────────────────────────────────────────


class WebSocketFeed:
    """Change feed client for the ``/ws`` endpoint."""

    def __init__(self, url: str, user_id: str | None = None) -> None:
        self.url = url
        self.user_id = user_id

    @asynccontextmanager
    async def subscribe(self, tables: Iterable[str]) -> AsyncIterator[AsyncIterator[FeedEvent]]:
        headers = {USER_HEADER: self.user_id} if self.user_id else None
        try:
            ws = await connect(self.url, additional_headers=headers)
        except (OSError, WebSocketException) as exc:
            raise FeedDisconnect(f"Cannot connect to change feed: {exc}") from exc

        try:
            table_list = list(tables)
            try:
                await ws.send(json.dumps({"action": "subscribe", "tables": table_list}))
                ack = json.loads(await ws.recv())
            except (ConnectionClosed, json.JSONDecodeError) as exc:
                raise FeedDisconnect(f"Subscription handshake failed: {exc}") from exc
            if not isinstance(ack, dict) or ack.get("type") != "subscribed":
                raise FeedDisconnect(f"Unexpected subscription reply: {ack}")
            logger.info("Subscribed to change feed for {}", table_list)
            yield self._events(ws)
        finally:
            await ws.close()

    async def _events(self, ws: ClientConnection) -> AsyncIterator[FeedEvent]:
        try:
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON feed frame")
                    continue
                if not isinstance(data, dict):
                    continue
                if data.get("type") not in ("INSERT", "UPDATE", "DELETE"):
                    continue
                try:
                    event = FeedEvent.model_validate(data)
                except PydanticValidationError:
                    logger.warning("Ignoring malformed feed event: {}", data.get("type"))
                    continue
                yield event
        except ConnectionClosed as exc:
            raise FeedDisconnect(f"Change feed dropped: {exc}") from exc
        raise FeedDisconnect("Change feed closed by server")
