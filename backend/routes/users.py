"""
Admin User Routes - users with nested businesses and dashboard stats.
"""
from fastapi import APIRouter, HTTPException, Request, status
import logging

from middleware import admin_route_guard
from services import admin_service
from utils.serialization import to_json_safe

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["admin-users"])


@router.get("/users")
async def list_users(request: Request):
    """All users, each with their businesses (admin)."""
    await admin_route_guard(request)
    try:
        users = await admin_service.list_users_with_businesses()
    except Exception as e:
        logger.error(f"Error fetching users: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch users"
        )
    return to_json_safe({"users": users})


@router.get("/admin/stats")
async def admin_stats(request: Request):
    """Dashboard totals: users, businesses, completed businesses, revenue (cents)."""
    await admin_route_guard(request)
    return to_json_safe(await admin_service.dashboard_stats())
