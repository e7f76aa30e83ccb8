"""Request dependencies shared by the API routers."""

from fastapi import Header, HTTPException


async def get_caller_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity of the caller. Authentication happens upstream; we trust the header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
