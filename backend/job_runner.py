"""
Shared job runner for scheduled background jobs.
Used by server (scheduler). Each run_* returns a dict with "message" and "count".
"""
import logging

logger = logging.getLogger(__name__)


async def run_stale_wizard_session_cleanup():
    """Cancel registrations whose wizard snapshot has not been touched within the TTL.

    Uses the same contract as an explicit cancel: uploaded owner documents are
    deleted best-effort, the draft is dropped while still a draft, and the
    snapshot is cleared.
    """
    try:
        from config import get_wizard_session_ttl_hours
        from services import wizard_session_store
        from services.registration_service import cancel_registration
        from services.wizard import WizardSession

        ttl_hours = get_wizard_session_ttl_hours()
        stale = await wizard_session_store.find_stale_sessions(ttl_hours)
        cleaned = 0
        for stored in stale:
            user_id = stored.get("userId")
            try:
                await cancel_registration(
                    user_id,
                    session=WizardSession.from_storage(stored),
                    reason="session_expired",
                )
                cleaned += 1
            except Exception as e:
                logger.warning(f"Stale wizard cleanup failed for user {user_id}: {e}")
        logger.info(f"Stale wizard session cleanup completed: {cleaned} sessions cleared")
        return {"message": f"Stale wizard sessions cleared: {cleaned}", "count": cleaned}
    except Exception as e:
        logger.error(f"Stale wizard session cleanup failed: {e}")
        raise
