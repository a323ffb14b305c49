"""
Admin Service - user/business listings and document management for the admin area.
"""
import logging
from typing import Any, Dict, List, Tuple

from database import database
from models import AuditAction, BusinessStatus, UserRole
from services import business_service, catalog
from services.storage_adapter import upload_document
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

# Never exposed through admin listings
PRIVATE_USER_FIELDS = {"_id": 0, "passwordHash": 0}


class UnknownDocumentSlotError(ValueError):
    pass


def _with_path(business: Dict[str, Any]) -> Dict[str, Any]:
    return {**business, "path": business_service.business_path(business["userId"], business["id"])}


async def list_users_with_businesses() -> List[Dict[str, Any]]:
    """Every user with their businesses nested under `businesses`."""
    db = database.get_db()
    users = await db.users.find({}, PRIVATE_USER_FIELDS).sort("creationTime", -1).to_list(5000)
    businesses = await db.businesses.find({}, {"_id": 0}).to_list(20000)

    by_user: Dict[str, List[Dict[str, Any]]] = {}
    for business in businesses:
        by_user.setdefault(business.get("userId"), []).append(_with_path(business))

    return [{**user, "businesses": by_user.get(user["uid"], [])} for user in users]


async def list_all_businesses() -> List[Dict[str, Any]]:
    """Flat business list across users, each tagged with userId, userEmail and path.

    A failure while reading one user's businesses is logged and that user is skipped.
    """
    db = database.get_db()
    users = await db.users.find({}, {"_id": 0, "uid": 1, "email": 1}).to_list(5000)

    results: List[Dict[str, Any]] = []
    for user in users:
        try:
            businesses = await db.businesses.find(
                {"userId": user["uid"]}, {"_id": 0}
            ).sort("createdAt", -1).to_list(500)
        except Exception as e:
            logger.error(f"Failed to load businesses for user {user.get('uid')}: {e}")
            continue
        for business in businesses:
            results.append({**_with_path(business), "userEmail": user.get("email")})
    return results


async def dashboard_stats() -> Dict[str, Any]:
    db = database.get_db()
    total_users = await db.users.count_documents({})
    total_businesses = await db.businesses.count_documents({})
    completed = await db.businesses.count_documents({"status": BusinessStatus.COMPLETED.value})

    revenue_rows = await db.businesses.aggregate([
        {"$match": {"status": BusinessStatus.COMPLETED.value}},
        {"$group": {"_id": None, "total": {"$sum": "$paymentDetails.amount"}}},
    ]).to_list(1)
    recent = await db.businesses.find({}, {"_id": 0}).sort("createdAt", -1).limit(5).to_list(5)

    return {
        "totalUsers": total_users,
        "totalBusinesses": total_businesses,
        "completedBusinesses": completed,
        "totalRevenue": revenue_rows[0]["total"] if revenue_rows else 0,
        "recentBusinesses": [_with_path(b) for b in recent],
    }


def _check_slots(business: Dict[str, Any], slots: List[str]) -> None:
    country_name = (business.get("country") or {}).get("name")
    allowed = catalog.get_document_slots(country_name)
    unknown = [slot for slot in slots if slot not in allowed]
    if unknown:
        raise UnknownDocumentSlotError(
            f"Unknown document slot '{unknown[0]}' for {country_name or 'this business'}"
        )


async def replace_documents(
    user_id: str,
    business_id: str,
    files: List[Tuple[str, str, str, bytes]],
    actor_id: str,
) -> Dict[str, Any]:
    """Upload (slot, filename, content_type, data) tuples one by one, then merge into documents.

    Nothing is written to the business unless every upload succeeds.
    """
    business = await business_service.get_business(user_id, business_id)
    if not business:
        raise business_service.BusinessNotFoundError(f"Business {business_id} not found")
    _check_slots(business, [slot for slot, _, _, _ in files])

    uploaded = {}
    for slot, filename, content_type, data in files:
        uploaded[slot] = await upload_document(user_id, filename, content_type, data, uploaded_by=actor_id)

    documents = {**(business.get("documents") or {}), **uploaded}
    updated = await business_service.update_business(user_id, business_id, {"documents": documents}, actor_id=actor_id)

    await create_audit_log(
        action=AuditAction.DOCUMENTS_REPLACED,
        actor_role=UserRole.ROLE_ADMIN,
        actor_id=actor_id,
        user_id=user_id,
        resource_type="business",
        resource_id=business_id,
        metadata={"slots": sorted(uploaded.keys())},
    )
    return updated


async def remove_document(user_id: str, business_id: str, slot: str, actor_id: str) -> Dict[str, Any]:
    """Drop one document entry. The stored object itself is left in place."""
    business = await business_service.get_business(user_id, business_id)
    if not business:
        raise business_service.BusinessNotFoundError(f"Business {business_id} not found")

    documents = dict(business.get("documents") or {})
    if slot not in documents:
        raise UnknownDocumentSlotError(f"No document stored for '{slot}'")
    documents.pop(slot)

    updated = await business_service.update_business(user_id, business_id, {"documents": documents}, actor_id=actor_id)

    await create_audit_log(
        action=AuditAction.DOCUMENT_REMOVED,
        actor_role=UserRole.ROLE_ADMIN,
        actor_id=actor_id,
        user_id=user_id,
        resource_type="business",
        resource_id=business_id,
        metadata={"slot": slot},
    )
    return updated
