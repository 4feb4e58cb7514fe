from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.db.session import get_db
from tablet_loans.db.models import Admin
from tablet_loans.api.v1.dependencies import get_current_admin
from tablet_loans.api.v1.errors import ledger_http_error
from tablet_loans.core.exceptions import LedgerError
from tablet_loans.schemas.loan import (
    LoanCreate,
    LoanDetailResponse,
    LoanListResponse,
    LoanResponse,
    LoanReturn,
)
from tablet_loans.services import ledger
from tablet_loans.services.csv_import import LOAN_EXPORT_FIELDS, rows_to_csv
from tablet_loans.utils.timezone import utcnow

router = APIRouter(prefix="/loans", tags=["Loans"])

CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]


@router.post(
    "",
    response_model=LoanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Lend a device",
    description=(
        "Lend a Serviceable device to a borrower. The device must not already be on loan. "
        "`date_borrowed` defaults to now."
    ),
    responses={
        201: {"description": "Loan created"},
        400: {"description": "Expected return date before the borrow date"},
        401: {"description": "Not authenticated"},
        404: {"description": "Device or borrower not found"},
        409: {"description": "Device not serviceable or already borrowed"},
        422: {"description": "Validation error"},
    },
)
async def create_loan_endpoint(
    data: LoanCreate,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        loan = await ledger.create_loan(
            db,
            device_id=data.device_id,
            borrower_id=data.borrower_id,
            condition=data.condition,
            accessories=data.accessories,
            date_borrowed=data.date_borrowed or utcnow(),
            expected_return_date=data.expected_return_date,
            notes=data.notes,
        )
    except LedgerError as e:
        raise ledger_http_error(e)
    return loan


@router.get(
    "",
    response_model=LoanListResponse,
    summary="List loans",
    description="Retrieve a paginated list of loans, optionally filtered by device, borrower or open/closed state.",
    responses={
        200: {"description": "Paginated list of loans"},
        401: {"description": "Not authenticated"},
    },
)
async def list_loans(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    device_id: str | None = None,
    borrower_id: str | None = None,
    is_returned: bool | None = None,
    sort_by: str = Query("date_borrowed"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    loans, total = await ledger.get_loans(
        db, page=page, size=size, device_id=device_id, borrower_id=borrower_id,
        is_returned=is_returned, sort_by=sort_by, sort_order=sort_order,
    )
    return LoanListResponse(
        items=loans, total=total, page=page, size=size,
        pages=ledger.calculate_pages(total, size),
    )


@router.get(
    "/open",
    response_model=List[LoanDetailResponse],
    summary="Open loans",
    description="Every loan whose device has not yet been returned or reported lost.",
    responses={401: {"description": "Not authenticated"}},
)
async def open_loans(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await ledger.list_open_loans(db)


@router.get(
    "/export",
    summary="Export loans as CSV",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}, 401: {"description": "Not authenticated"}},
)
async def export_loans(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    is_returned: bool | None = None,
):
    loans = await ledger.list_all_loans(db, is_returned=is_returned)
    rows = [
        {
            "id": loan.id,
            "device_serial_number": loan.device.serial_number,
            "device": f"{loan.device.brand} {loan.device.model}",
            "borrower_student_number": loan.borrower.student_number,
            "borrower_name": loan.borrower.full_name,
            "date_borrowed": loan.date_borrowed.isoformat(),
            "expected_return_date": loan.expected_return_date,
            "condition": loan.condition.value,
            "with_charger": loan.with_charger,
            "with_cable": loan.with_cable,
            "with_box": loan.with_box,
            "is_returned": loan.is_returned,
            "return_date": loan.return_date.isoformat() if loan.return_date else None,
            "return_condition": loan.return_condition.value if loan.return_condition else None,
            "return_notes": loan.return_notes,
        }
        for loan in loans
    ]
    return Response(
        content=rows_to_csv(rows, LOAN_EXPORT_FIELDS),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="loans.csv"'},
    )


@router.get(
    "/{loan_id}",
    response_model=LoanDetailResponse,
    summary="Get loan details",
    responses={
        200: {"description": "Loan details"},
        401: {"description": "Not authenticated"},
        404: {"description": "Loan not found"},
    },
)
async def get_loan_endpoint(
    loan_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    loan = await ledger.get_loan_by_id(db, loan_id)
    if not loan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Loan not found")
    return loan


@router.post(
    "/{loan_id}/return",
    response_model=LoanResponse,
    summary="Return a device",
    description=(
        "Close an open loan. The device's condition becomes the return condition. "
        "`return_date` defaults to now."
    ),
    responses={
        200: {"description": "Loan closed"},
        400: {"description": "Return date before the borrow date"},
        401: {"description": "Not authenticated"},
        404: {"description": "Loan not found"},
        409: {"description": "Loan already closed"},
        422: {"description": "Validation error"},
    },
)
async def return_loan_endpoint(
    loan_id: str,
    data: LoanReturn,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        loan = await ledger.process_return(
            db,
            loan_id=loan_id,
            return_date=data.return_date or utcnow(),
            return_condition=data.return_condition,
            return_notes=data.return_notes,
        )
    except LedgerError as e:
        raise ledger_http_error(e)
    return loan
