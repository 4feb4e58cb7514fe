from typing import Annotated, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.core.config import settings
from tablet_loans.db.session import get_db
from tablet_loans.db.models import Admin
from tablet_loans.api.v1.dependencies import get_current_admin
from tablet_loans.schemas.dashboard import DashboardStats, RecentActivityItem
from tablet_loans.services.dashboard import get_dashboard_stats, get_recent_activity

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])

CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]


@router.get(
    "/stats",
    response_model=DashboardStats,
    summary="Inventory counters",
    description="Total devices and borrowers, devices on loan, lost devices and devices available to lend.",
    responses={401: {"description": "Not authenticated"}},
)
async def dashboard_stats(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await get_dashboard_stats(db)


@router.get(
    "/recent-activity",
    response_model=List[RecentActivityItem],
    summary="Recent activity",
    description="Latest device history events across the inventory, newest first.",
    responses={401: {"description": "Not authenticated"}},
)
async def recent_activity(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int | None = Query(None, ge=1, le=100),
):
    return await get_recent_activity(db, limit=limit or settings.RECENT_ACTIVITY_LIMIT)
