from typing import List

from sqlalchemy import select, func, exists
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.core.logging import get_logger
from tablet_loans.db.models import Borrower, Device, DeviceStatus, HistoryEvent, Loan

logger = get_logger("services.dashboard")


async def get_dashboard_stats(db: AsyncSession) -> dict:
    """Inventory counters for the dashboard."""
    total_devices = (await db.execute(select(func.count()).select_from(Device))).scalar()
    total_borrowers = (await db.execute(select(func.count()).select_from(Borrower))).scalar()
    borrowed_devices = (
        await db.execute(
            select(func.count()).select_from(Loan).where(Loan.is_returned.is_(False))
        )
    ).scalar()
    lost_devices = (
        await db.execute(
            select(func.count()).select_from(Device).where(Device.status == DeviceStatus.LOST)
        )
    ).scalar()
    available_devices = (
        await db.execute(
            select(func.count())
            .select_from(Device)
            .where(
                Device.status == DeviceStatus.SERVICEABLE,
                ~exists().where(Loan.device_id == Device.id, Loan.is_returned.is_(False)),
            )
        )
    ).scalar()

    return {
        "total_devices": total_devices,
        "total_borrowers": total_borrowers,
        "borrowed_devices": borrowed_devices,
        "lost_devices": lost_devices,
        "available_devices": available_devices,
    }


async def get_recent_activity(db: AsyncSession, limit: int = 10) -> List[dict]:
    """Latest history events across all devices, newest first."""
    result = await db.execute(
        select(HistoryEvent, Device, Borrower)
        .join(Device, HistoryEvent.device_id == Device.id)
        .outerjoin(Borrower, HistoryEvent.borrower_id == Borrower.id)
        .order_by(HistoryEvent.date.desc(), HistoryEvent.created_at.desc())
        .limit(limit)
    )
    return [
        {
            "id": event.id,
            "event_type": event.event_type,
            "date": event.date,
            "notes": event.notes,
            "device": device,
            "borrower": borrower,
        }
        for event, device, borrower in result.all()
    ]
