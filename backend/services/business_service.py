"""
Business Service - draft persistence and completion of business registrations.

Lifecycle:
    draft      written incrementally while the wizard advances (last write wins)
    completed  set exactly once, by payment confirmation or the Stripe webhook

Every write passes through strip_none(): the store must never receive
undefined values, so optional fields that were not supplied are dropped.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import database
from models import AuditAction, BusinessStatus, BusinessUpdate, PROTECTED_BUSINESS_FIELDS, UserRole
from services.step_validators import validate_owners
from utils.audit import create_audit_log
from utils.serialization import strip_none

logger = logging.getLogger(__name__)

BUSINESS_SECTIONS = ("company", "country", "package", "address", "owner")


class BusinessNotFoundError(Exception):
    pass


class BusinessStateError(Exception):
    """Operation not allowed in the record's current status."""
    pass


class InvalidBusinessUpdateError(ValueError):
    pass


def build_business_fields(form: Dict[str, Any]) -> Dict[str, Any]:
    """Map a wizard form snapshot to Business fields (only sections that are present)."""
    return strip_none({key: form.get(key) for key in BUSINESS_SECTIONS if form.get(key)})


def business_path(user_id: str, business_id: str) -> str:
    return f"/users/{user_id}/businesses/{business_id}"


# ============================================================================
# Reads
# ============================================================================

async def get_business(user_id: str, business_id: str) -> Optional[Dict[str, Any]]:
    db = database.get_db()
    return await db.businesses.find_one({"id": business_id, "userId": user_id}, {"_id": 0})


async def get_business_by_session(session_id: str) -> Optional[Dict[str, Any]]:
    db = database.get_db()
    return await db.businesses.find_one({"checkoutSessionId": session_id}, {"_id": 0})


async def list_user_businesses(user_id: str, status: Optional[BusinessStatus] = None) -> List[Dict[str, Any]]:
    db = database.get_db()
    query: Dict[str, Any] = {"userId": user_id}
    if status:
        query["status"] = status.value
    return await db.businesses.find(query, {"_id": 0}).sort("createdAt", -1).to_list(500)


# ============================================================================
# Drafts
# ============================================================================

async def save_draft(user_id: str, form: Dict[str, Any]) -> str:
    """Create the draft on first call, then update it in place. Returns the business id."""
    db = database.get_db()
    now = datetime.now(timezone.utc)
    fields = build_business_fields(form)
    business_id = form.get("businessId")

    if business_id:
        existing = await get_business(user_id, business_id)
        if existing:
            if existing.get("status") == BusinessStatus.COMPLETED.value:
                raise BusinessStateError("Business registration is already completed")
            await db.businesses.update_one(
                {"id": business_id, "userId": user_id, "status": BusinessStatus.DRAFT.value},
                {"$set": {**fields, "updatedAt": now}},
            )
            return business_id
        logger.info(f"Draft {business_id} no longer exists, creating a new one")

    business_id = str(uuid.uuid4())
    doc = strip_none({
        "id": business_id,
        "userId": user_id,
        "status": BusinessStatus.DRAFT.value,
        "documents": {},
        "createdAt": now,
        "updatedAt": now,
        **fields,
    })
    await db.businesses.insert_one(doc)
    logger.info(f"Draft business created: {business_id} for user {user_id}")

    await create_audit_log(
        action=AuditAction.BUSINESS_DRAFT_CREATED,
        actor_role=UserRole.ROLE_USER,
        actor_id=user_id,
        user_id=user_id,
        resource_type="business",
        resource_id=business_id,
    )
    return business_id


async def attach_checkout_session(user_id: str, business_id: str, session_id: str) -> None:
    db = database.get_db()
    await db.businesses.update_one(
        {"id": business_id, "userId": user_id, "status": BusinessStatus.DRAFT.value},
        {"$set": {"checkoutSessionId": session_id, "updatedAt": datetime.now(timezone.utc)}},
    )


async def delete_draft(user_id: str, business_id: str) -> bool:
    """Delete a draft. Completed records are never deleted here."""
    db = database.get_db()
    result = await db.businesses.delete_one(
        {"id": business_id, "userId": user_id, "status": BusinessStatus.DRAFT.value}
    )
    if result.deleted_count:
        logger.info(f"Draft business deleted: {business_id}")
    return bool(result.deleted_count)


# ============================================================================
# Completion (idempotent per checkout session)
# ============================================================================

async def complete_business(
    user_id: str,
    business_id: Optional[str],
    session_id: str,
    payment_details: Dict[str, Any],
    business_data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Mark a registration as paid. Safe to call any number of times per session.

    An existing draft is flipped to completed; when the draft is gone the whole
    record is written from business_data (the copy carried in checkout
    metadata). A repeat call for the same session returns the stored record.
    """
    db = database.get_db()

    existing = await get_business_by_session(session_id)
    if existing and existing.get("status") == BusinessStatus.COMPLETED.value:
        logger.info(f"Checkout session {session_id} already finalized as business {existing['id']}")
        return existing

    now = datetime.now(timezone.utc)
    completion = strip_none({
        "status": BusinessStatus.COMPLETED.value,
        "paymentDetails": payment_details,
        "checkoutSessionId": session_id,
        "updatedAt": now,
    })

    record = None
    target_id = business_id or (existing or {}).get("id")
    if target_id:
        draft = await get_business(user_id, target_id)
        if draft and draft.get("status") == BusinessStatus.COMPLETED.value:
            raise BusinessStateError(f"Business {target_id} was already paid with another checkout session")
        if draft:
            # Fill any section the draft is missing from the checkout copy
            backfill = {
                k: v for k, v in build_business_fields(business_data or {}).items()
                if not draft.get(k)
            }
            try:
                record = await db.businesses.find_one_and_update(
                    {"id": target_id, "userId": user_id, "status": BusinessStatus.DRAFT.value},
                    {"$set": {**backfill, **completion}},
                    projection={"_id": 0},
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                record = None

    if record is None:
        again = await get_business_by_session(session_id)
        if again and again.get("status") == BusinessStatus.COMPLETED.value:
            return again
        if not business_data:
            raise BusinessNotFoundError(f"No draft or business data for checkout session {session_id}")

        doc = strip_none({
            **build_business_fields(business_data),
            "id": target_id or str(uuid.uuid4()),
            "userId": user_id,
            "documents": business_data.get("documents") or {},
            "createdAt": now,
            **completion,
        })
        try:
            await db.businesses.insert_one(doc)
        except DuplicateKeyError:
            # Concurrent confirm for the same session won the race
            again = await get_business_by_session(session_id)
            if again:
                return again
            raise
        doc.pop("_id", None)
        record = doc

    logger.info(f"Business {record['id']} completed via checkout session {session_id}")
    await create_audit_log(
        action=AuditAction.BUSINESS_COMPLETED,
        actor_role=UserRole.ROLE_USER,
        actor_id=user_id,
        user_id=user_id,
        resource_type="business",
        resource_id=record["id"],
        metadata={"checkout_session_id": session_id, "amount": payment_details.get("amount")},
    )
    return record


# ============================================================================
# Generic update (admin edit)
# ============================================================================

def validate_business_update(fields: Any, user_id: Optional[str] = None) -> Dict[str, Any]:
    if not isinstance(fields, dict) or not fields:
        raise InvalidBusinessUpdateError("Invalid request body")
    protected = [key for key in fields if key in PROTECTED_BUSINESS_FIELDS]
    if protected:
        raise InvalidBusinessUpdateError(f"Field '{protected[0]}' cannot be updated")
    try:
        update = BusinessUpdate.model_validate(fields)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidBusinessUpdateError(f"Invalid value for {location}: {first.get('msg')}")
    updates = strip_none(update.model_dump(mode="json", exclude_unset=True))

    # Owners keep the same rules as the wizard step (sum of 100, one CEO with documents)
    if "owner" in updates:
        result = validate_owners(updates["owner"], {}, user_id=user_id)
        if not result.can_continue:
            raise InvalidBusinessUpdateError(result.message)
        updates["owner"] = strip_none(result.data)
    return updates


async def update_business(
    user_id: str,
    business_id: str,
    fields: Dict[str, Any],
    actor_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Merge partial fields into a business and stamp updatedAt."""
    updates = validate_business_update(fields, user_id=user_id)
    if not updates:
        raise InvalidBusinessUpdateError("No fields to update")

    db = database.get_db()
    before = await get_business(user_id, business_id)
    if not before:
        raise BusinessNotFoundError(f"Business {business_id} not found")

    await db.businesses.update_one(
        {"id": business_id, "userId": user_id},
        {"$set": {**updates, "updatedAt": datetime.now(timezone.utc)}},
    )

    updated = await get_business(user_id, business_id)
    if not updated:
        raise BusinessNotFoundError(f"Business {business_id} not found")

    await create_audit_log(
        action=AuditAction.BUSINESS_UPDATED,
        actor_role=UserRole.ROLE_ADMIN if actor_id else None,
        actor_id=actor_id,
        user_id=user_id,
        resource_type="business",
        resource_id=business_id,
        before_state={k: before.get(k) for k in updates},
        after_state={k: updated.get(k) for k in updates},
        metadata={"fields": sorted(updates.keys())},
    )
    return updated
