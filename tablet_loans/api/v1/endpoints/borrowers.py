from typing import Annotated, List

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.db.session import get_db
from tablet_loans.db.models import Admin
from tablet_loans.api.v1.dependencies import get_current_admin
from tablet_loans.api.v1.errors import ledger_http_error
from tablet_loans.api.v1.uploads import read_csv_upload
from tablet_loans.core.exceptions import LedgerError
from tablet_loans.schemas.borrower import (
    BorrowerCreate,
    BorrowerListResponse,
    BorrowerResponse,
    BorrowerUpdate,
    BorrowerWithLoansResponse,
)
from tablet_loans.schemas.imports import BorrowerImportPreview, BorrowerImportResponse
from tablet_loans.schemas.loan import LoanDetailResponse
from tablet_loans.services import ledger
from tablet_loans.services.borrower import (
    bulk_create_borrowers,
    calculate_pages,
    create_borrower,
    delete_borrower,
    find_existing_student_numbers,
    get_active_loan_counts,
    get_borrower_by_id,
    get_borrowers,
    update_borrower,
)
from tablet_loans.services.csv_import import borrower_template_csv, parse_borrower_csv

router = APIRouter(prefix="/borrowers", tags=["Borrowers"])

CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]


@router.get(
    "",
    response_model=BorrowerListResponse,
    summary="List borrowers",
    description="Retrieve a paginated list of borrowers with optional program/year filters and free-text search over name, student number and program.",
    responses={
        200: {"description": "Paginated list of borrowers"},
        401: {"description": "Not authenticated"},
    },
)
async def list_borrowers(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: str | None = None,
    program_code: str | None = None,
    year_level: int | None = Query(None, ge=1),
    sort_by: str = Query("last_name"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
):
    borrowers, total = await get_borrowers(
        db, page=page, size=size, search=search, program_code=program_code,
        year_level=year_level, sort_by=sort_by, sort_order=sort_order,
    )
    counts = await get_active_loan_counts(db, [b.id for b in borrowers])
    items = [
        BorrowerWithLoansResponse.model_validate(b).model_copy(
            update={"active_loans": counts.get(b.id, 0)}
        )
        for b in borrowers
    ]
    return BorrowerListResponse(
        items=items, total=total, page=page, size=size, pages=calculate_pages(total, size)
    )


@router.post(
    "",
    response_model=BorrowerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a borrower",
    responses={
        201: {"description": "Borrower created successfully"},
        401: {"description": "Not authenticated"},
        409: {"description": "Student number already registered"},
        422: {"description": "Validation error"},
    },
)
async def create_borrower_endpoint(
    data: BorrowerCreate,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        borrower = await create_borrower(db, data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return borrower


@router.get(
    "/template",
    summary="Borrower import template",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}, 401: {"description": "Not authenticated"}},
)
async def borrower_template(current_admin: CurrentAdmin):
    return Response(
        content=borrower_template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="borrowers_template.csv"'},
    )


@router.post(
    "/import",
    response_model=BorrowerImportPreview | BorrowerImportResponse,
    summary="Import borrowers from CSV",
    description=(
        "Two-step import. Without `confirm=true` the file is only analysed: the "
        "response lists how many rows are new and which student numbers already "
        "exist. With `confirm=true` the new rows are inserted and duplicates skipped."
    ),
    responses={
        200: {"description": "Import analysis"},
        201: {"description": "Borrowers imported"},
        400: {"description": "Empty or unreadable file"},
        401: {"description": "Not authenticated"},
        413: {"description": "File too large"},
    },
)
async def import_borrowers(
    response: Response,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    file: UploadFile = File(...),
    confirm: bool = False,
):
    content = await read_csv_upload(file)
    rows, errors = parse_borrower_csv(content)

    if not confirm:
        existing = await find_existing_student_numbers(db, (r.student_number for r in rows))
        duplicates = [r.student_number for r in rows if r.student_number in existing]
        return BorrowerImportPreview(
            total=len(rows),
            new=len(rows) - len(duplicates),
            duplicates=duplicates,
            records=rows,
            errors=errors,
        )

    created, duplicates = await bulk_create_borrowers(db, rows) if rows else ([], [])
    response.status_code = status.HTTP_201_CREATED
    message = f"Imported {len(created)} borrowers."
    if duplicates:
        message += f" Skipped {len(duplicates)} existing student numbers."
    return BorrowerImportResponse(
        message=message,
        created=[BorrowerResponse.model_validate(b) for b in created],
        duplicates=duplicates,
        errors=errors,
    )


@router.get(
    "/{borrower_id}",
    response_model=BorrowerWithLoansResponse,
    summary="Get borrower details",
    responses={
        200: {"description": "Borrower details with active loan count"},
        401: {"description": "Not authenticated"},
        404: {"description": "Borrower not found"},
    },
)
async def get_borrower(
    borrower_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    borrower = await get_borrower_by_id(db, borrower_id)
    if not borrower:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Borrower not found")
    counts = await get_active_loan_counts(db, [borrower.id])
    return BorrowerWithLoansResponse.model_validate(borrower).model_copy(
        update={"active_loans": counts.get(borrower.id, 0)}
    )


@router.put(
    "/{borrower_id}",
    response_model=BorrowerResponse,
    summary="Update a borrower",
    responses={
        200: {"description": "Borrower updated successfully"},
        401: {"description": "Not authenticated"},
        404: {"description": "Borrower not found"},
        409: {"description": "Student number already registered"},
        422: {"description": "Validation error"},
    },
)
async def update_borrower_endpoint(
    borrower_id: str,
    data: BorrowerUpdate,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        borrower = await update_borrower(db, borrower_id, data.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if not borrower:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Borrower not found")
    return borrower


@router.delete(
    "/{borrower_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a borrower",
    description="Delete a borrower who has never borrowed a device.",
    responses={
        204: {"description": "Borrower deleted"},
        401: {"description": "Not authenticated"},
        404: {"description": "Borrower not found"},
        409: {"description": "Borrower has loan history"},
    },
)
async def delete_borrower_endpoint(
    borrower_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        deleted = await delete_borrower(db, borrower_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Borrower not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{borrower_id}/loans",
    response_model=List[LoanDetailResponse],
    summary="Borrower loans",
    description="All loans of the borrower, most recent first.",
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Borrower not found"},
    },
)
async def borrower_loans(
    borrower_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        return await ledger.list_loans_for_borrower(db, borrower_id)
    except LedgerError as e:
        raise ledger_http_error(e)
