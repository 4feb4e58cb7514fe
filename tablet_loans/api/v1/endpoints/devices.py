from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.db.session import get_db
from tablet_loans.db.models import Admin, Device, DeviceStatus, DeviceCondition, Loan
from tablet_loans.api.v1.dependencies import get_current_admin
from tablet_loans.api.v1.errors import ledger_http_error
from tablet_loans.api.v1.uploads import read_csv_upload
from tablet_loans.core.exceptions import LedgerError
from tablet_loans.schemas.device import (
    CurrentBorrower,
    DeviceAvailabilityResponse,
    DeviceCreate,
    DeviceListResponse,
    DeviceResponse,
    DeviceStatusUpdate,
    DeviceUpdate,
    DeviceWithLoanResponse,
)
from tablet_loans.schemas.history import HistoryEventResponse
from tablet_loans.schemas.imports import DeviceImportResponse
from tablet_loans.schemas.loan import LoanDetailResponse
from tablet_loans.services import ledger
from tablet_loans.services.csv_import import (
    DEVICE_EXPORT_FIELDS,
    device_template_csv,
    parse_device_csv,
    rows_to_csv,
)
from tablet_loans.services.device import (
    bulk_create_devices,
    calculate_pages,
    create_device,
    delete_device,
    get_available_devices,
    get_device_by_id,
    get_devices,
    get_open_loans_by_device,
    list_all_devices,
    update_device,
)

router = APIRouter(prefix="/devices", tags=["Devices"])

CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]


def _with_current_borrower(device: Device, loan: Optional[Loan]) -> DeviceWithLoanResponse:
    item = DeviceWithLoanResponse.model_validate(device)
    if loan is not None:
        item.current_borrower = CurrentBorrower(
            loan_id=loan.id,
            borrower_id=loan.borrower_id,
            full_name=loan.borrower.full_name,
            student_number=loan.borrower.student_number,
            date_borrowed=loan.date_borrowed,
        )
    return item


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "",
    response_model=DeviceListResponse,
    summary="List devices",
    description="Retrieve a paginated list of devices with optional filters for status, condition, availability and free-text search. Each device carries its current borrower, if on loan.",
    responses={
        200: {"description": "Paginated list of devices"},
        401: {"description": "Not authenticated"},
    },
)
async def list_devices(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    device_status: DeviceStatus | None = Query(None, alias="status"),
    condition: DeviceCondition | None = None,
    available: bool | None = None,
    search: str | None = None,
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    devices, total = await get_devices(
        db, page=page, size=size, status=device_status, condition=condition,
        search=search, available=available, sort_by=sort_by, sort_order=sort_order,
    )
    open_loans = await get_open_loans_by_device(db, [d.id for d in devices])
    items = [_with_current_borrower(d, open_loans.get(d.id)) for d in devices]
    return DeviceListResponse(
        items=items, total=total, page=page, size=size, pages=calculate_pages(total, size)
    )


@router.post(
    "",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a device",
    description="Add a new device to the inventory. A `created` event is written to its history.",
    responses={
        201: {"description": "Device created successfully"},
        401: {"description": "Not authenticated"},
        409: {"description": "Serial number or IMEI already registered"},
        422: {"description": "Validation error"},
    },
)
async def create_device_endpoint(
    data: DeviceCreate,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        device = await create_device(db, data.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return device


@router.get(
    "/available",
    response_model=List[DeviceResponse],
    summary="Available devices",
    description="Devices that can be lent right now: Serviceable and without an open loan.",
    responses={401: {"description": "Not authenticated"}},
)
async def list_available_devices(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await get_available_devices(db)


@router.get(
    "/export",
    summary="Export devices as CSV",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}, 401: {"description": "Not authenticated"}},
)
async def export_devices(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    devices = await list_all_devices(db)
    open_loans = await get_open_loans_by_device(db, [d.id for d in devices])
    rows = []
    for device in devices:
        row = DeviceResponse.model_validate(device).model_dump(mode="json")
        loan = open_loans.get(device.id)
        row["current_borrower"] = (
            f"{loan.borrower.full_name} ({loan.borrower.student_number})" if loan else None
        )
        rows.append(row)
    return _csv_response(rows_to_csv(rows, DEVICE_EXPORT_FIELDS), "devices.csv")


@router.get(
    "/template",
    summary="Device import template",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}, 401: {"description": "Not authenticated"}},
)
async def device_template(current_admin: CurrentAdmin):
    return _csv_response(device_template_csv(), "devices_template.csv")


@router.post(
    "/import",
    response_model=DeviceImportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import devices from CSV",
    description="Bulk-register devices from a CSV file. Rows whose serial number or IMEI already exists are skipped; invalid rows are reported by line number.",
    responses={
        201: {"description": "Import processed"},
        400: {"description": "Empty or unreadable file"},
        401: {"description": "Not authenticated"},
        413: {"description": "File too large"},
    },
)
async def import_devices(
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
    file: UploadFile = File(...),
):
    content = await read_csv_upload(file)
    rows, errors = parse_device_csv(content)
    created, duplicates = await bulk_create_devices(db, rows) if rows else ([], [])

    if created or duplicates:
        message = f"Imported {len(created)} devices."
        if duplicates:
            message += f" Skipped {len(duplicates)} duplicate serial numbers."
    else:
        message = "No devices were imported."
    return DeviceImportResponse(
        message=message, created=created, duplicates=duplicates, errors=errors
    )


@router.get(
    "/{device_id}",
    response_model=DeviceWithLoanResponse,
    summary="Get device details",
    responses={
        200: {"description": "Device details with current borrower"},
        401: {"description": "Not authenticated"},
        404: {"description": "Device not found"},
    },
)
async def get_device(
    device_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    device = await get_device_by_id(db, device_id)
    if not device:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    open_loans = await get_open_loans_by_device(db, [device.id])
    return _with_current_borrower(device, open_loans.get(device.id))


@router.put(
    "/{device_id}",
    response_model=DeviceResponse,
    summary="Update a device",
    description="Update device details. Status and condition changes are recorded in the device history.",
    responses={
        200: {"description": "Device updated successfully"},
        400: {"description": "Status set to Lost"},
        401: {"description": "Not authenticated"},
        404: {"description": "Device not found"},
        409: {"description": "Serial number or IMEI already registered"},
        422: {"description": "Validation error"},
    },
)
async def update_device_endpoint(
    device_id: str,
    data: DeviceUpdate,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        device = await update_device(db, device_id, data.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LedgerError as e:
        raise ledger_http_error(e)
    if not device:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return device


@router.delete(
    "/{device_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a device",
    description="Delete a device whose history holds only its creation: never lent, reported lost, or edited.",
    responses={
        204: {"description": "Device deleted"},
        401: {"description": "Not authenticated"},
        404: {"description": "Device not found"},
        409: {"description": "Device has loan or edit history"},
    },
)
async def delete_device_endpoint(
    device_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        deleted = await delete_device(db, device_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{device_id}/history",
    response_model=List[HistoryEventResponse],
    summary="Device history",
    description="Every recorded event for the device, newest first.",
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Device not found"},
    },
)
async def device_history(
    device_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        return await ledger.get_device_history(db, device_id)
    except LedgerError as e:
        raise ledger_http_error(e)


@router.get(
    "/{device_id}/loans",
    response_model=List[LoanDetailResponse],
    summary="Device loans",
    description="All loans of the device, most recent first.",
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Device not found"},
    },
)
async def device_loans(
    device_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        return await ledger.list_loans_for_device(db, device_id)
    except LedgerError as e:
        raise ledger_http_error(e)


@router.get(
    "/{device_id}/availability",
    response_model=DeviceAvailabilityResponse,
    summary="Device availability",
    description="Whether the device can be lent right now.",
    responses={
        401: {"description": "Not authenticated"},
        404: {"description": "Device not found"},
    },
)
async def device_availability(
    device_id: str,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        available = await ledger.is_device_available(db, device_id)
    except LedgerError as e:
        raise ledger_http_error(e)
    return DeviceAvailabilityResponse(device_id=device_id, available=available)


@router.patch(
    "/{device_id}/status",
    response_model=DeviceResponse,
    summary="Correct device status or condition",
    description=(
        "Administrative correction of a device's status and/or condition. "
        "One history event is written per field that changes. "
        "Setting a Lost device back to Serviceable reinstates it. "
        "A device cannot be set to Lost here; file a loss report instead."
    ),
    responses={
        200: {"description": "Device updated"},
        400: {"description": "Status set to Lost"},
        401: {"description": "Not authenticated"},
        404: {"description": "Device not found"},
        422: {"description": "Validation error"},
    },
)
async def update_device_status(
    device_id: str,
    data: DeviceStatusUpdate,
    current_admin: CurrentAdmin,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        return await ledger.record_status_or_condition_edit(
            db, device_id, new_status=data.status, new_condition=data.condition
        )
    except LedgerError as e:
        raise ledger_http_error(e)
