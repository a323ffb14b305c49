"""
Grant or revoke admin access by email.

Admin routes require an entry in the admins collection; use this when admin
sign-up is disabled.

Usage (from backend/):
  python -m scripts.grant_admin admin@example.com
  python -m scripts.grant_admin admin@example.com --revoke
"""

import asyncio
import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def set_admin(db, email: str, revoke: bool = False) -> bool:
    """Returns True when the admins collection changed."""
    email_lower = email.strip().lower()
    if not email_lower:
        logger.error("Email is required")
        return False

    if revoke:
        result = await db.admins.delete_one({"email": email_lower})
        if result.deleted_count:
            logger.info("Revoked admin: %s", email_lower)
        else:
            logger.warning("No admin entry for %s", email_lower)
        return bool(result.deleted_count)

    if not await db.users.find_one({"email": email_lower}, {"_id": 0, "uid": 1}):
        logger.warning("No account with email %s; the user must sign up first", email_lower)
        return False

    result = await db.admins.update_one(
        {"email": email_lower},
        {"$setOnInsert": {"email": email_lower, "role": "admin", "createdAt": datetime.now(timezone.utc)}},
        upsert=True,
    )
    if result.upserted_id is None:
        logger.info("%s is already an admin; no change.", email_lower)
        return False
    logger.info("Granted admin: %s", email_lower)
    return True


async def run(email: str, revoke: bool) -> bool:
    async with get_db_context() as db:
        return await set_admin(db, email, revoke)


def main():
    parser = argparse.ArgumentParser(description="Grant or revoke admin access by email")
    parser.add_argument("email", help="Account email")
    parser.add_argument("--revoke", action="store_true", help="Remove admin access instead")
    args = parser.parse_args()
    changed = asyncio.run(run(args.email, args.revoke))
    sys.exit(0 if changed else 1)


if __name__ == "__main__":
    main()
