from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import decode_access_token
from models import UserRole
from database import database

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload:
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") == UserRole.ROLE_ADMIN.value

async def require_admin(request: Request) -> dict:
    """Require admin role."""
    user = await require_auth(request)
    if not is_admin(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user

async def admin_route_guard(request: Request) -> dict:
    """Guard for admin routes - token role plus a live check against the admins collection."""
    user = await require_admin(request)

    db = database.get_db()
    admin = await db.admins.find_one({"email": user.get("email")}, {"_id": 0})
    if not admin:
        logger.warning("Admin token presented for revoked admin email=%s", user.get("email"))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized as admin"
        )
    return user
