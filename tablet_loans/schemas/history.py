from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from tablet_loans.db.models import DeviceCondition, HistoryEventType
from tablet_loans.schemas.loan import Accessories


class HistoryEventResponse(BaseModel):
    id: str
    device_id: str
    borrower_id: Optional[str]
    loan_id: Optional[str]
    event_type: HistoryEventType
    date: datetime
    condition: Optional[DeviceCondition]
    accessories: Optional[Accessories]
    notes: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
