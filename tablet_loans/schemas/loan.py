from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from tablet_loans.db.models import DeviceCondition
from tablet_loans.schemas.borrower import BorrowerSummary
from tablet_loans.schemas.device import DeviceSummary


class Accessories(BaseModel):
    """Accessories handed over together with a device."""

    charger: bool = False
    cable: bool = False
    box: bool = False

    model_config = {"extra": "forbid", "frozen": True}


class LoanCreate(BaseModel):
    device_id: str
    borrower_id: str
    condition: DeviceCondition
    accessories: Accessories = Field(default_factory=Accessories)
    date_borrowed: Optional[datetime] = None
    expected_return_date: Optional[date] = None
    notes: Optional[str] = None


class LoanReturn(BaseModel):
    return_date: Optional[datetime] = None
    return_condition: DeviceCondition
    return_notes: Optional[str] = None


class LoanResponse(BaseModel):
    id: str
    device_id: str
    borrower_id: str
    date_borrowed: datetime
    expected_return_date: Optional[date]
    accessories: Accessories
    condition: DeviceCondition
    notes: Optional[str]
    is_returned: bool
    return_date: Optional[datetime]
    return_condition: Optional[DeviceCondition]
    return_notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class LoanDetailResponse(LoanResponse):
    device: DeviceSummary
    borrower: BorrowerSummary


class LoanListResponse(BaseModel):
    items: List[LoanDetailResponse]
    total: int
    page: int
    size: int
    pages: int
