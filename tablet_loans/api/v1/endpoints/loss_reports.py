from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.db.session import get_db
from tablet_loans.db.models import Admin
from tablet_loans.api.v1.dependencies import get_current_admin
from tablet_loans.api.v1.errors import ledger_http_error
from tablet_loans.api.v1.uploads import remove_loss_document, save_loss_document
from tablet_loans.core.exceptions import LedgerError
from tablet_loans.schemas.loss_report import LossReportListResponse, LossReportResponse
from tablet_loans.services import ledger
from tablet_loans.utils.timezone import utcnow

router = APIRouter(prefix="/loss-reports", tags=["Loss Reports"])

CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]


@router.post(
    "",
    response_model=LossReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Report a device lost",
    description=(
        "Declare a device lost, optionally attaching a supporting document "
        "(police report, affidavit). The device becomes Lost and its open loan, "
        "if any, is closed. Sent as `multipart/form-data`."
    ),
    responses={
        201: {"description": "Loss recorded"},
        400: {"description": "Loan belongs to another device or borrower, loss date before the borrow date, or bad document"},
        401: {"description": "Not authenticated"},
        404: {"description": "Device, borrower or loan not found"},
        409: {"description": "Device already reported lost"},
        413: {"description": "Document too large"},
    },
)
async def create_loss_report(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    device_id: str = Form(...),
    borrower_id: str = Form(...),
    date_reported: Optional[datetime] = Form(None),
    details: Optional[str] = Form(None),
    loan_id: Optional[str] = Form(None),
    document: Optional[UploadFile] = File(None),
):
    document_path = None
    if document is not None and document.filename:
        document_path = await save_loss_document(document)

    try:
        report = await ledger.report_loss(
            db,
            device_id=device_id,
            borrower_id=borrower_id,
            date_reported=date_reported or utcnow(),
            details=details,
            loan_id=loan_id or None,
            document_path=document_path,
        )
        # Commit before returning; a failed commit must discard the stored document
        await db.commit()
    except LedgerError as e:
        if document_path:
            await remove_loss_document(document_path)
        raise ledger_http_error(e)
    except Exception:
        if document_path:
            await remove_loss_document(document_path)
        raise
    return report


@router.get(
    "",
    response_model=LossReportListResponse,
    summary="List loss reports",
    description="All loss reports, most recent first.",
    responses={401: {"description": "Not authenticated"}},
)
async def list_loss_reports(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    reports = await ledger.get_loss_reports(db)
    return LossReportListResponse(items=reports, total=len(reports))


@router.get(
    "/{report_id}",
    response_model=LossReportResponse,
    summary="Get loss report details",
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Loss report not found"},
    },
)
async def get_loss_report(
    report_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    report = await ledger.get_loss_report_by_id(db, report_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Loss report not found")
    return report
