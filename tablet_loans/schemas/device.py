from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator

from tablet_loans.db.models import DeviceStatus, DeviceCondition


class DeviceCreate(BaseModel):
    brand: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    serial_number: str = Field(..., min_length=1, max_length=100)
    imei: Optional[str] = Field(None, max_length=50)
    status: DeviceStatus = DeviceStatus.SERVICEABLE
    condition: DeviceCondition = DeviceCondition.GOOD
    has_charger: bool = False
    has_cable: bool = False
    has_box: bool = False
    notes: Optional[str] = None


class DeviceUpdate(BaseModel):
    brand: Optional[str] = Field(None, min_length=1, max_length=100)
    model: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    serial_number: Optional[str] = Field(None, min_length=1, max_length=100)
    imei: Optional[str] = Field(None, max_length=50)
    status: Optional[DeviceStatus] = None
    condition: Optional[DeviceCondition] = None
    has_charger: Optional[bool] = None
    has_cable: Optional[bool] = None
    has_box: Optional[bool] = None
    notes: Optional[str] = None


class DeviceStatusUpdate(BaseModel):
    """Administrative correction of a device's status and/or condition."""

    status: Optional[DeviceStatus] = None
    condition: Optional[DeviceCondition] = None

    @model_validator(mode="after")
    def _require_one_field(self):
        if self.status is None and self.condition is None:
            raise ValueError("Provide a status, a condition, or both")
        return self


class DeviceResponse(BaseModel):
    id: str
    brand: str
    model: str
    color: Optional[str]
    serial_number: str
    imei: Optional[str]
    status: DeviceStatus
    condition: DeviceCondition
    has_charger: bool
    has_cable: bool
    has_box: bool
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CurrentBorrower(BaseModel):
    loan_id: str
    borrower_id: str
    full_name: str
    student_number: str
    date_borrowed: datetime


class DeviceWithLoanResponse(DeviceResponse):
    current_borrower: Optional[CurrentBorrower] = None


class DeviceSummary(BaseModel):
    id: str
    brand: str
    model: str
    serial_number: str

    model_config = {"from_attributes": True}


class DeviceListResponse(BaseModel):
    items: List[DeviceWithLoanResponse]
    total: int
    page: int
    size: int
    pages: int


class DeviceAvailabilityResponse(BaseModel):
    device_id: str
    available: bool
