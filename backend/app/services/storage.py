"""Disk-backed file storage with public URLs."""

from pathlib import Path, PurePosixPath

from loguru import logger

from backend.app.config import settings


class StorageError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def _resolve(bucket: str, path: str, root: Path | None = None) -> Path:
    if bucket not in settings.storage_buckets:
        raise StorageError(404, f"Bucket '{bucket}' not found")
    rel = PurePosixPath(path)
    if not path or rel.is_absolute() or ".." in rel.parts:
        raise StorageError(400, "Invalid object path")
    base = (root or settings.storage_dir) / bucket
    return base.joinpath(*rel.parts)


def save_object(bucket: str, path: str, data: bytes, root: Path | None = None) -> str:
    """Store ``data`` under ``bucket/path``. Existing objects are not overwritten."""
    if not data:
        raise StorageError(400, "Empty upload")
    if len(data) > settings.max_upload_bytes:
        raise StorageError(413, "File too large")
    target = _resolve(bucket, path, root)
    if target.exists():
        raise StorageError(409, "Object already exists")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    logger.info("Stored {}/{} ({} bytes)", bucket, path, len(data))
    return path


def object_path(bucket: str, path: str, root: Path | None = None) -> Path:
    target = _resolve(bucket, path, root)
    if not target.is_file():
        raise StorageError(404, "Object not found")
    return target


def public_url(bucket: str, path: str) -> str:
    return f"{settings.base_url}/storage/{bucket}/{path}"
