"""Message endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_caller_id
from backend.app.db import get_db
from backend.app.schemas.message import MessageCreate, MessageResponse, MessageUpdate
from backend.app.services import message_service
from backend.app.services.message_service import MessageError

router = APIRouter(prefix="/messages", tags=["messages"])


def _http_error(exc: MessageError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.get("", response_model=list[MessageResponse])
async def list_messages(
    order: Literal["asc", "desc"] = Query(default="asc"),
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    user_id: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    return await message_service.list_messages(
        db, ascending=order == "asc", limit=limit, offset=offset, user_id=user_id
    )


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(message_id: str, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        msg = await message_service.get_message(db, message_id)
    except MessageError as exc:
        raise _http_error(exc) from exc
    return message_service.message_to_dict(msg)


@router.post("", response_model=MessageResponse, status_code=201)
async def create_message(
    data: MessageCreate,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        return await message_service.create_message(db, caller_id=caller_id, data=data)
    except MessageError as exc:
        raise _http_error(exc) from exc


@router.patch("/{message_id}", response_model=MessageResponse)
async def update_message(
    message_id: str,
    data: MessageUpdate,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        return await message_service.update_message(
            db, caller_id=caller_id, message_id=message_id, data=data
        )
    except MessageError as exc:
        raise _http_error(exc) from exc


@router.delete("/{message_id}", status_code=204)
async def delete_message(
    message_id: str,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> Response:
    try:
        await message_service.delete_message(db, caller_id=caller_id, message_id=message_id)
    except MessageError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)
