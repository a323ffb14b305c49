"""Per-user persistence of the wizard snapshot (survives reloads and new devices)."""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from database import database
from services.wizard import WizardSession, WizardFlow

logger = logging.getLogger(__name__)


async def load_session(user_id: str) -> Optional[WizardSession]:
    db = database.get_db()
    stored = await db.wizard_sessions.find_one({"userId": user_id}, {"_id": 0})
    if not stored:
        return None
    return WizardSession.from_storage(stored)


async def save_session(user_id: str, session: WizardSession) -> None:
    db = database.get_db()
    doc = session.to_storage()
    doc["updatedAt"] = datetime.now(timezone.utc)
    await db.wizard_sessions.update_one(
        {"userId": user_id},
        {"$set": doc, "$setOnInsert": {"userId": user_id, "createdAt": doc["updatedAt"]}},
        upsert=True,
    )


async def clear_session(user_id: str) -> None:
    db = database.get_db()
    await db.wizard_sessions.delete_one({"userId": user_id})
    logger.info(f"Wizard session cleared for user {user_id}")


async def clear_session_for_business(user_id: str, business_id: str) -> bool:
    """Drop the snapshot once its registration is paid.

    A snapshot for a newer registration (different businessId) is left alone.
    """
    session = await load_session(user_id)
    if session is None or session.form.get("businessId") != business_id:
        return False
    await clear_session(user_id)
    return True


async def recover_session(
    user_id: str,
    register: bool = False,
    clean: bool = False,
    flow: Optional[WizardFlow] = None,
) -> WizardSession:
    """Session to show when the wizard is opened.

    clean drops any stored snapshot; register starts a fresh registration even
    if one is in progress. Otherwise the stored snapshot is restored as-is.
    """
    if clean:
        await clear_session(user_id)
    if register or clean:
        session = WizardSession.fresh(flow or WizardFlow.MAIN)
        await save_session(user_id, session)
        return session

    session = await load_session(user_id)
    if session is None:
        session = WizardSession.fresh(flow or WizardFlow.MAIN)
        await save_session(user_id, session)
    return session


async def find_stale_sessions(ttl_hours: int, limit: int = 200) -> List[dict]:
    db = database.get_db()
    cutoff = datetime.now(timezone.utc) - timedelta(hours=ttl_hours)
    return await db.wizard_sessions.find(
        {"updatedAt": {"$lt": cutoff}},
        {"_id": 0},
    ).to_list(limit)
