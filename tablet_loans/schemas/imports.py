from typing import List
from pydantic import BaseModel

from tablet_loans.schemas.borrower import BorrowerCreate, BorrowerResponse
from tablet_loans.schemas.device import DeviceResponse


class ImportRowError(BaseModel):
    line: int
    message: str


class DeviceImportResponse(BaseModel):
    message: str
    created: List[DeviceResponse]
    duplicates: List[str]
    errors: List[ImportRowError] = []


class BorrowerImportPreview(BaseModel):
    total: int
    new: int
    duplicates: List[str]
    records: List[BorrowerCreate]
    errors: List[ImportRowError] = []


class BorrowerImportResponse(BaseModel):
    message: str
    created: List[BorrowerResponse]
    duplicates: List[str]
    errors: List[ImportRowError] = []
