"""
Storage Adapter - GridFS-backed document storage behind a pluggable interface.

Objects are addressed by a storage path of the form
    users/{userId}/documents/{epochMillis}.{ext}
and exposed through GET /api/files/{path}. Callers only ever keep the
returned {url, name} pair.
"""
import hashlib
import io
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import unquote, urlparse

from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from config import get_public_api_url
from database import database

logger = logging.getLogger(__name__)

FILES_ROUTE = "/api/files/"

MAX_FILE_BYTES = 5 * 1024 * 1024  # 5MB

ALLOWED_MIMES = {
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
}
ALLOWED_EXTENSIONS = {".pdf", ".jpg", ".jpeg", ".png"}


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StoredFileNotFoundError(StorageError):
    pass


class UploadValidationError(StorageError):
    """Rejected upload; status_code is 400 or 413."""

    def __init__(self, message: str, error_code: str = "UPLOAD_VALIDATION_FAILED", status_code: int = 400, **extra):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        return {"error_code": self.error_code, "message": self.message, **self.extra}


def validate_upload(filename: str, content_type: Optional[str], size: int) -> None:
    """Same policy for owner identity documents and admin replacements: PDF/JPG/PNG up to 5MB."""
    if size <= 0:
        raise UploadValidationError("No file provided", error_code="EMPTY_FILE")
    if size > MAX_FILE_BYTES:
        raise UploadValidationError(
            f"File '{filename}' exceeds {MAX_FILE_BYTES // (1024 * 1024)}MB limit.",
            error_code="FILE_TOO_LARGE",
            status_code=413,
            max_bytes=MAX_FILE_BYTES,
            file_size=size,
        )
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadValidationError(
            "Only PDF, JPG, and PNG files are allowed.",
            allowed_types=sorted(ALLOWED_EXTENSIONS),
        )
    # Allow by extension if MIME is generic
    if content_type and content_type not in ALLOWED_MIMES and content_type != "application/octet-stream":
        raise UploadValidationError(
            f"File type not allowed: {content_type}. Use PDF, JPG, or PNG.",
            allowed_types=sorted(ALLOWED_EXTENSIONS),
        )


def build_storage_path(user_id: str, filename: str) -> str:
    ext = Path(filename or "").suffix.lower().lstrip(".") or "bin"
    return f"users/{user_id}/documents/{int(time.time() * 1000)}.{ext}"


def url_for_path(path: str) -> str:
    return f"{get_public_api_url()}{FILES_ROUTE}{path}"


def path_from_url(url: str) -> Optional[str]:
    """Storage path inside a public file URL, or None when the URL is not ours."""
    parsed = urlparse(url or "")
    route = parsed.path if parsed.scheme else (url or "")
    if FILES_ROUTE not in route:
        return None
    path = unquote(route.split(FILES_ROUTE, 1)[1])
    return path or None


def user_prefix(user_id: str) -> str:
    return f"users/{user_id}/"


def path_belongs_to(path: Optional[str], user_id: str) -> bool:
    """True when a storage path sits under the user's own folder."""
    if not path or not user_id:
        return False
    return path.startswith(user_prefix(user_id)) and ".." not in path.split("/")


def url_belongs_to(url: Optional[str], user_id: str) -> bool:
    return path_belongs_to(path_from_url(url or ""), user_id)


class StorageAdapter(ABC):
    """Abstract base class for storage implementations."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Store bytes under path and return the file id."""
        pass

    @abstractmethod
    async def get(self, path: str) -> Tuple[bytes, Dict[str, Any]]:
        """Return content and metadata; raises StoredFileNotFoundError."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete every object stored under path. False when nothing was there."""
        pass


class GridFSStorageAdapter(StorageAdapter):
    """Stores files in MongoDB GridFS; the storage path is the GridFS filename."""

    def __init__(self, bucket_name: str = "documents"):
        self.bucket_name = bucket_name
        self._bucket = None

    def _get_bucket(self) -> AsyncIOMotorGridFSBucket:
        if self._bucket is None:
            self._bucket = AsyncIOMotorGridFSBucket(database.get_db(), bucket_name=self.bucket_name)
        return self._bucket

    def _files(self):
        return database.get_db()[f"{self.bucket_name}.files"]

    async def put(self, path: str, data: bytes, content_type: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        file_id = await self._get_bucket().upload_from_stream(
            path,
            io.BytesIO(data),
            metadata={
                "content_type": content_type,
                "sha256_hash": hashlib.sha256(data).hexdigest(),
                "upload_timestamp": datetime.now(timezone.utc).isoformat(),
                **(metadata or {}),
            },
        )
        logger.info(f"File uploaded to GridFS: {path} ({file_id})")
        return str(file_id)

    async def get(self, path: str) -> Tuple[bytes, Dict[str, Any]]:
        file_doc = await self._files().find_one({"filename": path}, sort=[("uploadDate", -1)])
        if not file_doc:
            raise StoredFileNotFoundError(f"File not found: {path}")
        stream = io.BytesIO()
        await self._get_bucket().download_to_stream(file_doc["_id"], stream)
        return stream.getvalue(), file_doc.get("metadata") or {}

    async def delete(self, path: str) -> bool:
        bucket = self._get_bucket()
        deleted = False
        async for file_doc in self._files().find({"filename": path}, {"_id": 1}):
            await bucket.delete(file_doc["_id"])
            deleted = True
        if deleted:
            logger.info(f"File deleted from GridFS: {path}")
        return deleted


# Singleton instance
storage_adapter = GridFSStorageAdapter()


async def upload_document(
    user_id: str,
    filename: str,
    content_type: Optional[str],
    data: bytes,
    uploaded_by: Optional[str] = None,
) -> Dict[str, str]:
    """Validate and store a document; returns {url, name}."""
    validate_upload(filename, content_type, len(data))
    path = build_storage_path(user_id, filename)
    await storage_adapter.put(
        path,
        data,
        content_type or "application/octet-stream",
        metadata={"original_name": filename, "user_id": user_id, "uploaded_by": uploaded_by or user_id},
    )
    return {"url": url_for_path(path), "name": filename}


async def remove_document(url: str) -> bool:
    """Delete the object behind a public URL. A missing object is not an error."""
    path = path_from_url(url)
    if not path:
        logger.warning(f"Not a stored document URL, nothing to delete: {url}")
        return False
    return await storage_adapter.delete(path)


async def read_document(path: str) -> Tuple[bytes, str, str]:
    """Content, content type and original name for GET /api/files/{path}."""
    content, metadata = await storage_adapter.get(path)
    return (
        content,
        metadata.get("content_type", "application/octet-stream"),
        metadata.get("original_name") or Path(path).name,
    )
