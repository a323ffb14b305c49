"""
Upload Routes - owner identity documents and file download.
"""
from fastapi import APIRouter, HTTPException, Request, UploadFile, File, Form, status
from fastapi.responses import Response
from typing import Optional
import logging

from middleware import require_auth, is_admin
from models import AuditAction, UserRole
from services import registration_service
from services.storage_adapter import (
    UploadValidationError,
    StoredFileNotFoundError,
    upload_document,
    read_document,
    path_belongs_to,
)
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["uploads"])


@router.post("/upload")
async def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
    userId: Optional[str] = Form(None),
):
    """
    Upload a document for a user.
    - Allowed: PDF, JPG, PNG. Max 5MB.
    - Stored at users/{userId}/documents/{epochMillis}.{ext}; returns {url, name}.
    """
    user = await require_auth(request)
    if file is None or not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    target_user_id = userId or user["user_id"]
    if target_user_id != user["user_id"] and not is_admin(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot upload documents for another user"
        )

    content = await file.read()
    try:
        result = await upload_document(
            target_user_id,
            file.filename,
            file.content_type,
            content,
            uploaded_by=user["user_id"],
        )
    except UploadValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_payload())
    except Exception as e:
        logger.error(f"Upload failed for user {target_user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file"
        )

    if target_user_id == user["user_id"]:
        try:
            await registration_service.record_upload(target_user_id, result["url"])
        except Exception as e:
            logger.warning(f"Could not track upload in wizard session: {e}")

    await create_audit_log(
        action=AuditAction.DOCUMENT_UPLOADED,
        actor_role=UserRole(user.get("role", UserRole.ROLE_USER.value)),
        actor_id=user["user_id"],
        user_id=target_user_id,
        resource_type="document",
        metadata={"name": result["name"]},
    )
    return result


@router.get("/files/{path:path}")
async def download_file(path: str, request: Request):
    """Stream a stored document. Users may read their own files; admins any file."""
    user = await require_auth(request)
    if not path_belongs_to(path, user["user_id"]) and not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    try:
        content, content_type, name = await read_document(path)
    except StoredFileNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'inline; filename="{name}"'},
    )
