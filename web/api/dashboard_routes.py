"""Dashboard API route."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from core.models import StaffUser
from core.models.base import async_session_factory
from core.services.dashboard import dashboard_stats
from web.auth import require_user

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
async def get_stats(user: StaffUser = Depends(require_user)):
    """Attendance totals, per-entitlement progress and recent activity."""
    async with async_session_factory() as session:
        return {"stats": await dashboard_stats(session)}
