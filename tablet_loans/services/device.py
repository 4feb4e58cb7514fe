import math
from typing import Optional, List, Tuple, Dict

from sqlalchemy import select, func, exists, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.core.logging import get_logger
from tablet_loans.db.models import (
    Device,
    DeviceStatus,
    DeviceCondition,
    HistoryEvent,
    HistoryEventType,
    Loan,
    LossReport,
)
from tablet_loans.schemas.device import DeviceCreate
from tablet_loans.schemas.loan import Accessories
from tablet_loans.services import ledger
from tablet_loans.utils.ids import is_valid_id

logger = get_logger("services.device")

DEVICE_SORT_FIELDS = {"brand", "model", "serial_number", "status", "condition", "created_at"}


def _has_open_loan():
    return exists().where(Loan.device_id == Device.id, Loan.is_returned.is_(False))


async def _ensure_unique_identifiers(
    db: AsyncSession,
    serial_number: Optional[str],
    imei: Optional[str],
    exclude_id: Optional[str] = None,
) -> None:
    if serial_number:
        query = select(Device.id).where(Device.serial_number == serial_number)
        if exclude_id:
            query = query.where(Device.id != exclude_id)
        if (await db.execute(query)).first():
            raise ValueError(f"A device with serial number {serial_number} already exists")
    if imei:
        query = select(Device.id).where(Device.imei == imei)
        if exclude_id:
            query = query.where(Device.id != exclude_id)
        if (await db.execute(query)).first():
            raise ValueError(f"A device with IMEI {imei} already exists")


async def _record_created(db: AsyncSession, device: Device, notes: str) -> None:
    await ledger.append_history_event(
        db,
        device.id,
        HistoryEventType.CREATED,
        condition=device.condition,
        accessories=Accessories(
            charger=device.has_charger, cable=device.has_cable, box=device.has_box
        ),
        notes=notes,
    )


async def create_device(db: AsyncSession, data: dict) -> Device:
    """Register a new device and record its creation in the history trail."""
    await _ensure_unique_identifiers(db, data.get("serial_number"), data.get("imei"))

    device = Device(**data)
    db.add(device)
    await db.flush()
    await _record_created(db, device, "Device added to inventory")
    await db.refresh(device)

    logger.info(f"Device created: id={device.id} serial={device.serial_number}")
    return device


async def get_devices(
    db: AsyncSession,
    page: int = 1,
    size: int = 20,
    status: Optional[DeviceStatus] = None,
    condition: Optional[DeviceCondition] = None,
    search: Optional[str] = None,
    available: Optional[bool] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[Device], int]:
    """List devices with filtering, sorting, and pagination."""
    query = select(Device)
    count_query = select(func.count()).select_from(Device)

    if status:
        query = query.where(Device.status == status)
        count_query = count_query.where(Device.status == status)
    if condition:
        query = query.where(Device.condition == condition)
        count_query = count_query.where(Device.condition == condition)
    if search:
        search_filter = or_(
            Device.brand.ilike(f"%{search}%"),
            Device.model.ilike(f"%{search}%"),
            Device.serial_number.ilike(f"%{search}%"),
            Device.imei.ilike(f"%{search}%"),
        )
        query = query.where(search_filter)
        count_query = count_query.where(search_filter)
    if available is not None:
        available_filter = (Device.status == DeviceStatus.SERVICEABLE) & ~_has_open_loan()
        if not available:
            available_filter = ~available_filter
        query = query.where(available_filter)
        count_query = count_query.where(available_filter)

    sort_column = getattr(Device, sort_by if sort_by in DEVICE_SORT_FIELDS else "created_at")
    if sort_order == "asc":
        query = query.order_by(sort_column.asc())
    else:
        query = query.order_by(sort_column.desc())

    offset = (page - 1) * size
    query = query.offset(offset).limit(size)

    result = await db.execute(query)
    devices = list(result.scalars().all())

    total_result = await db.execute(count_query)
    total = total_result.scalar()

    return devices, total


async def get_open_loans_by_device(db: AsyncSession, device_ids: List[str]) -> Dict[str, Loan]:
    """Map each of the given devices to its open loan, for those that have one."""
    if not device_ids:
        return {}
    result = await db.execute(
        select(Loan).where(Loan.device_id.in_(device_ids), Loan.is_returned.is_(False))
    )
    return {loan.device_id: loan for loan in result.scalars().all()}


async def get_device_by_id(db: AsyncSession, device_id: str) -> Optional[Device]:
    """Get a single device by ID."""
    if not is_valid_id(device_id):
        return None
    result = await db.execute(select(Device).where(Device.id == device_id))
    return result.scalar_one_or_none()


async def get_device_by_serial_number(db: AsyncSession, serial_number: str) -> Optional[Device]:
    result = await db.execute(select(Device).where(Device.serial_number == serial_number))
    return result.scalar_one_or_none()


async def list_all_devices(db: AsyncSession) -> List[Device]:
    result = await db.execute(select(Device).order_by(Device.brand.asc(), Device.serial_number.asc()))
    return list(result.scalars().all())


async def get_available_devices(db: AsyncSession) -> List[Device]:
    """Devices that can be lent right now: Serviceable and without an open loan."""
    result = await db.execute(
        select(Device)
        .where(Device.status == DeviceStatus.SERVICEABLE, ~_has_open_loan())
        .order_by(Device.brand.asc(), Device.model.asc())
    )
    return list(result.scalars().all())


async def update_device(db: AsyncSession, device_id: str, data: dict) -> Optional[Device]:
    """Update a device.

    Descriptive fields are written directly. ``status`` and ``condition`` go
    through the ledger so each change lands in the device history.
    """
    device = await get_device_by_id(db, device_id)
    if not device:
        return None

    new_status = data.pop("status", None)
    new_condition = data.pop("condition", None)

    serial_number = data.get("serial_number")
    imei = data.get("imei")
    await _ensure_unique_identifiers(
        db,
        serial_number if serial_number != device.serial_number else None,
        imei if imei != device.imei else None,
        exclude_id=device.id,
    )

    for key, value in data.items():
        if value is not None:
            setattr(device, key, value)
    await db.flush()

    if new_status is not None or new_condition is not None:
        device = await ledger.record_status_or_condition_edit(
            db, device_id, new_status=new_status, new_condition=new_condition
        )

    await db.refresh(device)

    logger.info(f"Device updated: id={device_id}")
    return device


async def delete_device(db: AsyncSession, device_id: str) -> bool:
    """Delete a device whose history holds nothing but its creation.

    A device that was lent, reported lost, or had its status or condition
    edited keeps its record so that trail stays intact.
    """
    device = await get_device_by_id(db, device_id)
    if not device:
        return False

    loan_count = await db.execute(
        select(func.count()).select_from(Loan).where(Loan.device_id == device_id)
    )
    report_count = await db.execute(
        select(func.count()).select_from(LossReport).where(LossReport.device_id == device_id)
    )
    if loan_count.scalar() or report_count.scalar():
        raise ValueError("Cannot delete a device with loan history")

    event_count = await db.execute(
        select(func.count())
        .select_from(HistoryEvent)
        .where(
            HistoryEvent.device_id == device_id,
            HistoryEvent.event_type != HistoryEventType.CREATED,
        )
    )
    if event_count.scalar():
        logger.warning(f"Device delete refused: id={device_id} has recorded history")
        raise ValueError("Cannot delete a device with recorded history")

    await db.execute(
        delete(HistoryEvent).where(
            HistoryEvent.device_id == device_id,
            HistoryEvent.event_type == HistoryEventType.CREATED,
        )
    )
    await db.delete(device)
    await db.flush()

    logger.info(f"Device deleted: id={device_id}")
    return True


async def bulk_create_devices(
    db: AsyncSession, items: List[DeviceCreate]
) -> Tuple[List[Device], List[str]]:
    """Insert devices from an import, skipping duplicate serial numbers or IMEIs.

    Duplicates are matched against existing rows and against earlier rows of
    the same batch. Returns the created devices and the skipped serial numbers.
    """
    serials = [item.serial_number for item in items]
    imeis = [item.imei for item in items if item.imei]

    existing = await db.execute(
        select(Device.serial_number, Device.imei).where(
            or_(Device.serial_number.in_(serials), Device.imei.in_(imeis))
        )
    )
    seen_serials = set()
    seen_imeis = set()
    for serial_number, imei in existing.all():
        seen_serials.add(serial_number)
        if imei:
            seen_imeis.add(imei)

    created: List[Device] = []
    duplicates: List[str] = []
    for item in items:
        if item.serial_number in seen_serials or (item.imei and item.imei in seen_imeis):
            duplicates.append(item.serial_number)
            continue
        seen_serials.add(item.serial_number)
        if item.imei:
            seen_imeis.add(item.imei)

        device = Device(**item.model_dump())
        db.add(device)
        await db.flush()
        await _record_created(db, device, "Device added to inventory in bulk import")
        created.append(device)

    for device in created:
        await db.refresh(device)

    logger.info(f"Bulk device import: created={len(created)} duplicates={len(duplicates)}")
    return created, duplicates


def calculate_pages(total: int, size: int) -> int:
    return math.ceil(total / size) if size > 0 else 0
