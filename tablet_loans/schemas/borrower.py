from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator


class BorrowerCreate(BaseModel):
    student_number: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    suffix_name: Optional[str] = Field(None, max_length=20)
    full_name: Optional[str] = Field(None, max_length=255)
    college_name: Optional[str] = None
    program_code: Optional[str] = None
    program_name: str = Field(..., min_length=1, max_length=255)
    major_name: Optional[str] = None
    year_level: int = Field(1, ge=1, le=10)
    academic_year: Optional[str] = None
    campus: Optional[str] = None
    student_status: str = "Regular"
    gender: str = "Undisclosed"
    date_of_birth: Optional[date] = None
    mobile_no: Optional[str] = None
    email: Optional[str] = None
    residence_address: Optional[str] = None
    guardian_full_name: Optional[str] = None
    guardian_mobile_no: Optional[str] = None
    guardian_email: Optional[str] = None
    guardian_address: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _fill_full_name(self):
        if not self.full_name:
            parts = [self.first_name, self.middle_name, self.last_name, self.suffix_name]
            self.full_name = " ".join(p for p in parts if p)
        return self


class BorrowerUpdate(BaseModel):
    student_number: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    middle_name: Optional[str] = None
    suffix_name: Optional[str] = None
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    college_name: Optional[str] = None
    program_code: Optional[str] = None
    program_name: Optional[str] = Field(None, min_length=1, max_length=255)
    major_name: Optional[str] = None
    year_level: Optional[int] = Field(None, ge=1, le=10)
    academic_year: Optional[str] = None
    campus: Optional[str] = None
    student_status: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    mobile_no: Optional[str] = None
    email: Optional[str] = None
    residence_address: Optional[str] = None
    guardian_full_name: Optional[str] = None
    guardian_mobile_no: Optional[str] = None
    guardian_email: Optional[str] = None
    guardian_address: Optional[str] = None
    notes: Optional[str] = None


class BorrowerResponse(BaseModel):
    id: str
    student_number: str
    last_name: str
    first_name: str
    middle_name: Optional[str]
    suffix_name: Optional[str]
    full_name: str
    college_name: Optional[str]
    program_code: Optional[str]
    program_name: str
    major_name: Optional[str]
    year_level: int
    academic_year: Optional[str]
    campus: Optional[str]
    student_status: str
    gender: str
    date_of_birth: Optional[date]
    mobile_no: Optional[str]
    email: Optional[str]
    residence_address: Optional[str]
    guardian_full_name: Optional[str]
    guardian_mobile_no: Optional[str]
    guardian_email: Optional[str]
    guardian_address: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BorrowerWithLoansResponse(BorrowerResponse):
    active_loans: int = 0


class BorrowerSummary(BaseModel):
    id: str
    student_number: str
    full_name: str

    model_config = {"from_attributes": True}


class BorrowerListResponse(BaseModel):
    items: List[BorrowerWithLoansResponse]
    total: int
    page: int
    size: int
    pages: int
