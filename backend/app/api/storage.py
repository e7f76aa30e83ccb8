"""File storage endpoints.

Uploads go to ``POST /api/storage/{bucket}/{path}`` with the raw bytes as
the body; stored objects are served publicly from ``/storage/{bucket}/{path}``.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse

from backend.app.api.deps import get_caller_id
from backend.app.services import storage
from backend.app.services.storage import StorageError

router = APIRouter(prefix="/storage", tags=["storage"])
public_router = APIRouter(prefix="/storage", tags=["storage"])


@router.post("/{bucket}/{path:path}", status_code=201)
async def upload_object(
    bucket: str,
    path: str,
    request: Request,
    caller_id: str = Depends(get_caller_id),
) -> dict:
    # Objects live under the uploader's own prefix
    if path.split("/", 1)[0] != caller_id:
        raise HTTPException(status_code=403, detail="Uploads must be under your own folder")
    data = await request.body()
    try:
        stored = storage.save_object(bucket, path, data)
    except StorageError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return {"path": stored, "public_url": storage.public_url(bucket, stored)}


@public_router.get("/{bucket}/{path:path}")
async def get_object(bucket: str, path: str) -> FileResponse:
    try:
        target = storage.object_path(bucket, path)
    except StorageError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return FileResponse(target)
