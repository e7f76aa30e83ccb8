"""Typing presence, online status and profile endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_caller_id
from backend.app.db import get_db
from backend.app.models.profile import Profile
from backend.app.models.typing_status import TypingStatus
from backend.app.models.user_status import UserStatus
from backend.app.schemas.presence import (
    ProfileResponse,
    ProfileUpsert,
    StatusResponse,
    StatusUpdate,
    TypingResponse,
    TypingUpsert,
)
from backend.app.services.broadcaster import broadcast_change

router = APIRouter(tags=["presence"])


@router.get("/typing", response_model=list[TypingResponse])
async def list_typing(db: AsyncSession = Depends(get_db)) -> list[dict]:
    result = await db.execute(select(TypingStatus).order_by(TypingStatus.user_id))
    return [
        {"user_id": t.user_id, "last_typing_at": t.last_typing_at}
        for t in result.scalars().all()
    ]


@router.put("/typing", response_model=TypingResponse)
async def upsert_typing(
    data: TypingUpsert,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if data.user_id != caller_id:
        raise HTTPException(status_code=403, detail="Cannot set typing for another user")

    status = await db.get(TypingStatus, data.user_id)
    if status is None:
        status = TypingStatus(user_id=data.user_id)
        db.add(status)
    status.last_typing_at = data.last_typing_at
    await db.commit()

    row = {"user_id": status.user_id, "last_typing_at": status.last_typing_at}
    await broadcast_change("UPDATE", "typing", new=row)
    return row


@router.get("/status", response_model=list[StatusResponse])
async def list_status(db: AsyncSession = Depends(get_db)) -> list[dict]:
    result = await db.execute(select(UserStatus).order_by(UserStatus.user_id))
    return [{"user_id": s.user_id, "online": s.online} for s in result.scalars().all()]


@router.put("/status", response_model=StatusResponse)
async def set_status(
    data: StatusUpdate,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if data.user_id != caller_id:
        raise HTTPException(status_code=403, detail="Cannot set status for another user")

    status = await db.get(UserStatus, data.user_id)
    if status is None:
        status = UserStatus(user_id=data.user_id)
        db.add(status)
    status.online = data.online
    status.updated_at = datetime.now(UTC).isoformat()
    await db.commit()
    return {"user_id": status.user_id, "online": status.online}


@router.get("/profiles", response_model=list[ProfileResponse])
async def list_profiles(db: AsyncSession = Depends(get_db)) -> list[dict]:
    result = await db.execute(select(Profile).order_by(Profile.username))
    return [
        {"id": p.id, "username": p.username, "full_name": p.full_name}
        for p in result.scalars().all()
    ]


@router.put("/profiles/me", response_model=ProfileResponse)
async def upsert_profile(
    data: ProfileUpsert,
    caller_id: str = Depends(get_caller_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    taken = await db.execute(
        select(Profile).where(Profile.username == data.username, Profile.id != caller_id)
    )
    if taken.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Username already taken")

    profile = await db.get(Profile, caller_id)
    if profile is None:
        profile = Profile(id=caller_id, created_at=datetime.now(UTC).isoformat())
        db.add(profile)
    profile.username = data.username
    profile.full_name = data.full_name
    await db.commit()
    return {"id": profile.id, "username": profile.username, "full_name": profile.full_name}
