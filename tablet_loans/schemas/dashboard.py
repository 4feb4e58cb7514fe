from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from tablet_loans.db.models import HistoryEventType
from tablet_loans.schemas.borrower import BorrowerSummary
from tablet_loans.schemas.device import DeviceSummary


class DashboardStats(BaseModel):
    total_devices: int
    total_borrowers: int
    borrowed_devices: int
    lost_devices: int
    available_devices: int


class RecentActivityItem(BaseModel):
    id: str
    event_type: HistoryEventType
    date: datetime
    notes: Optional[str]
    device: Optional[DeviceSummary]
    borrower: Optional[BorrowerSummary]
