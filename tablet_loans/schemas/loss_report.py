from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel


class LossReportResponse(BaseModel):
    id: str
    device_id: str
    borrower_id: str
    loan_id: Optional[str]
    date_reported: datetime
    details: Optional[str]
    document_path: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class LossReportListResponse(BaseModel):
    items: List[LossReportResponse]
    total: int
