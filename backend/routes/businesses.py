"""
Business Routes - admin listing, editing and document management, plus the
signed-in user's own businesses.
"""
from fastapi import APIRouter, HTTPException, Query, Request, status
from starlette.datastructures import UploadFile
from typing import Optional
import logging

from middleware import require_auth, admin_route_guard
from models import BusinessStatus
from services import admin_service, business_service
from services.admin_service import UnknownDocumentSlotError
from services.business_service import BusinessNotFoundError, InvalidBusinessUpdateError
from services.storage_adapter import UploadValidationError
from utils.serialization import to_json_safe

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["businesses"])


@router.get("/businesses")
async def list_businesses(request: Request):
    """All businesses across users (admin)."""
    await admin_route_guard(request)
    try:
        businesses = await admin_service.list_all_businesses()
    except Exception as e:
        logger.error(f"Error fetching businesses: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch businesses"
        )
    return to_json_safe({"success": True, "businesses": businesses, "total": len(businesses)})


@router.put("/businesses/{user_id}/{business_id}")
async def update_business(user_id: str, business_id: str, request: Request):
    """Merge partial fields into a business (admin). Status and payment details are read-only."""
    admin = await admin_route_guard(request)
    if not user_id.strip() or not business_id.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing userId or businessId")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")

    try:
        updated = await business_service.update_business(user_id, business_id, body, actor_id=admin["user_id"])
    except InvalidBusinessUpdateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BusinessNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    except Exception as e:
        logger.error(f"Error updating business {business_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update business"
        )
    return to_json_safe({"success": True, "data": updated})


@router.post("/businesses/{user_id}/{business_id}/documents")
async def replace_documents(user_id: str, business_id: str, request: Request):
    """Replace documents (admin). Multipart body: one file per slot, e.g. einTaxId=<file>."""
    admin = await admin_route_guard(request)
    form = await request.form()

    files = []
    for slot, value in form.multi_items():
        if isinstance(value, UploadFile):
            files.append((slot, value.filename or slot, value.content_type, await value.read()))
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    try:
        updated = await admin_service.replace_documents(user_id, business_id, files, actor_id=admin["user_id"])
    except BusinessNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    except UnknownDocumentSlotError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UploadValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_payload())
    except Exception as e:
        logger.error(f"Error replacing documents for {business_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload documents"
        )
    return to_json_safe({"success": True, "data": updated})


@router.delete("/businesses/{user_id}/{business_id}/documents/{slot}")
async def remove_document(user_id: str, business_id: str, slot: str, request: Request):
    """Remove one document entry (admin)."""
    admin = await admin_route_guard(request)
    try:
        updated = await admin_service.remove_document(user_id, business_id, slot, actor_id=admin["user_id"])
    except BusinessNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    except UnknownDocumentSlotError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return to_json_safe({"success": True, "data": updated})


@router.get("/my/businesses")
async def my_businesses(request: Request, status_filter: Optional[BusinessStatus] = Query(None, alias="status")):
    """The caller's registrations, newest first."""
    user = await require_auth(request)
    businesses = await business_service.list_user_businesses(user["user_id"], status_filter)
    return to_json_safe({"businesses": businesses, "total": len(businesses)})
