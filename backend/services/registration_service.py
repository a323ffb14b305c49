"""
Registration Service - runs the wizard for a signed-in user.

Glue between the pure state machine (services.wizard), the per-user snapshot
(services.wizard_session_store), draft persistence and checkout. Every
successful transition is saved, so a reload resumes exactly where the user was.
"""
import logging
from typing import Any, Dict, Optional

from config import get_payment_currency
from models import AuditAction, BusinessStatus, UserRole
from services import business_service, wizard
from services import wizard_session_store as store
from services.storage_adapter import remove_document
from services.stripe_service import stripe_service
from services.wizard import WizardFlow, WizardSession
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

DASHBOARD_REDIRECT = "/dashboard"


async def current_session(user_id: str) -> WizardSession:
    return await store.load_session(user_id) or WizardSession.fresh()


async def open_wizard(
    user_id: str,
    register: bool = False,
    clean: bool = False,
    flow: Optional[WizardFlow] = None,
) -> WizardSession:
    return await store.recover_session(user_id, register=register, clean=clean, flow=flow)


async def advance(user_id: str, step_data: Any) -> WizardSession:
    """Validate and merge the current step, persist the draft, then move on.

    Raises wizard.StepValidationError / IncompleteRegistrationError /
    InvalidTransitionError without touching any stored state.
    """
    session = await current_session(user_id)
    updated = wizard.next_step(session, step_data, user_id=user_id)

    if wizard.form_key_for(session.step):
        updated.form["businessId"] = await business_service.save_draft(user_id, updated.form)

    await store.save_session(user_id, updated)
    logger.info(f"Wizard advanced user={user_id} step {session.step} -> {updated.step}")
    return updated


async def go_back(user_id: str) -> Dict[str, Any]:
    session = await current_session(user_id)
    previous = wizard.previous_step(session)
    if previous is None:
        return await cancel_registration(user_id)
    await store.save_session(user_id, previous)
    return {"cancelled": False, "session": previous.to_dict()}


async def edit(user_id: str, step: int) -> WizardSession:
    session = await current_session(user_id)
    updated = wizard.edit_step(session, step)
    await store.save_session(user_id, updated)
    return updated


async def review(user_id: str) -> Dict[str, Any]:
    """Review screen; an incomplete form sends the session back to the first gap."""
    session = await current_session(user_id)
    result = wizard.review(session, get_payment_currency())
    if not result["complete"]:
        session.step = result["redirectStep"]
        await store.save_session(user_id, session)
    result["session"] = session.to_dict()
    return result


async def payment_summary(user_id: str) -> Dict[str, Any]:
    session = await current_session(user_id)
    return wizard.payment_summary(session, get_payment_currency())


async def start_checkout(user_id: str, email: Optional[str] = None) -> Dict[str, Any]:
    """Create the Stripe checkout for the current registration (Payment step)."""
    session = await current_session(user_id)
    if session.step < wizard.PAYMENT_STEP:
        raise wizard.InvalidTransitionError("Review the registration before paying")
    missing = wizard.missing_sections(session.form)
    if missing:
        raise wizard.IncompleteRegistrationError(missing, wizard.first_incomplete_step(session.form))

    business_id = await business_service.save_draft(user_id, session.form)
    if session.form.get("businessId") != business_id:
        session.form["businessId"] = business_id
        await store.save_session(user_id, session)

    return await stripe_service.create_checkout_session(
        user_id=user_id,
        business_id=business_id,
        amount_cents=wizard.total_amount_cents(session.form),
        business_data=business_service.build_business_fields(session.form),
        customer_email=email,
    )


async def record_upload(user_id: str, url: str) -> None:
    """Track an upload made during the wizard so cancellation can remove it."""
    session = await store.load_session(user_id)
    if session is None:
        return
    uploads = session.form.setdefault("uploadedDocuments", [])
    if url not in uploads:
        uploads.append(url)
        await store.save_session(user_id, session)


async def cancel_registration(
    user_id: str,
    session: Optional[WizardSession] = None,
    reason: str = "user_cancelled",
) -> Dict[str, Any]:
    """Abandon the registration in progress.

    Owner documents are deleted one at a time; a failed delete is logged and
    skipped. Only files under the user's own folder are touched, and nothing
    is deleted once the business has been paid for. The draft is removed only
    while it is still a draft.
    """
    session = session or await current_session(user_id)
    business_id = session.form.get("businessId")

    paid = False
    if business_id:
        business = await business_service.get_business(user_id, business_id)
        paid = bool(business) and business.get("status") == BusinessStatus.COMPLETED.value
        if paid:
            logger.info(f"Business {business_id} is already paid, keeping its documents")

    urls = [] if paid else wizard.owner_document_urls(session.form, user_id=user_id)
    removed = 0
    for url in urls:
        try:
            if await remove_document(url):
                removed += 1
        except Exception as e:
            logger.warning(f"Failed to delete document during cancellation url={url}: {e}")

    draft_deleted = False
    if business_id and not paid:
        try:
            draft_deleted = await business_service.delete_draft(user_id, business_id)
        except Exception as e:
            logger.warning(f"Failed to delete draft {business_id} during cancellation: {e}")

    await store.clear_session(user_id)

    await create_audit_log(
        action=AuditAction.WIZARD_CANCELLED if reason == "user_cancelled" else AuditAction.WIZARD_SESSION_EXPIRED,
        actor_role=UserRole.ROLE_USER if reason == "user_cancelled" else None,
        actor_id=user_id if reason == "user_cancelled" else None,
        user_id=user_id,
        resource_type="business",
        resource_id=business_id,
        metadata={"documents_removed": removed, "draft_deleted": draft_deleted, "reason": reason},
    )

    return {
        "cancelled": True,
        "redirect": DASHBOARD_REDIRECT,
        "documentsRemoved": removed,
        "draftDeleted": draft_deleted,
        "session": WizardSession.fresh(session.flow).to_dict(),
    }
