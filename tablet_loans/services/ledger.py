"""Loan ledger: borrow, return and loss transitions for devices.

The ledger owns loans, loss reports and the device history trail. It is the
only writer of a device's ``status``/``condition`` and of loan closure
fields, and every such write is paired with exactly one history event.

Each operation runs inside the caller's session and performs all of its
precondition checks before writing anything; a raised ``LedgerError``
therefore leaves nothing to undo beyond the caller's rollback.
"""
import math
from datetime import date, datetime
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.core.exceptions import (
    ConflictError,
    ConflictReason,
    EntityKind,
    NotFoundError,
    ValidationFailure,
)
from tablet_loans.core.logging import get_logger, log_fields
from tablet_loans.db.models import (
    Borrower,
    Device,
    DeviceCondition,
    DeviceStatus,
    HistoryEvent,
    HistoryEventType,
    Loan,
    LossReport,
)
from tablet_loans.schemas.loan import Accessories
from tablet_loans.utils.ids import is_valid_id
from tablet_loans.utils.timezone import as_utc, utcnow

logger = get_logger("services.ledger")

LOSS_RETURN_NOTES = "reported lost"

LOAN_SORT_FIELDS = {"date_borrowed", "expected_return_date", "return_date", "created_at"}


# ─── Lookups ────────────────────────────────────────────────────


async def _get_device(db: AsyncSession, device_id: str, lock: bool = False) -> Device:
    if not is_valid_id(device_id):
        raise NotFoundError(EntityKind.DEVICE, device_id)
    query = select(Device).where(Device.id == device_id)
    if lock:
        # Row lock on PostgreSQL; SQLite serializes writers on its own
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    device = result.scalar_one_or_none()
    if device is None:
        raise NotFoundError(EntityKind.DEVICE, device_id)
    return device


async def _get_borrower(db: AsyncSession, borrower_id: str) -> Borrower:
    if not is_valid_id(borrower_id):
        raise NotFoundError(EntityKind.BORROWER, borrower_id)
    result = await db.execute(select(Borrower).where(Borrower.id == borrower_id))
    borrower = result.scalar_one_or_none()
    if borrower is None:
        raise NotFoundError(EntityKind.BORROWER, borrower_id)
    return borrower


async def _get_loan(db: AsyncSession, loan_id: str, lock: bool = False) -> Loan:
    if not is_valid_id(loan_id):
        raise NotFoundError(EntityKind.LOAN, loan_id)
    query = select(Loan).where(Loan.id == loan_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFoundError(EntityKind.LOAN, loan_id)
    return loan


async def _get_open_loan(db: AsyncSession, device_id: str) -> Optional[Loan]:
    result = await db.execute(
        select(Loan)
        .where(Loan.device_id == device_id, Loan.is_returned.is_(False))
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


# ─── History ────────────────────────────────────────────────────


async def append_history_event(
    db: AsyncSession,
    device_id: str,
    event_type: HistoryEventType,
    event_date: Optional[datetime] = None,
    borrower_id: Optional[str] = None,
    loan_id: Optional[str] = None,
    condition: Optional[DeviceCondition] = None,
    accessories: Optional[Accessories] = None,
    notes: Optional[str] = None,
) -> HistoryEvent:
    """Append one immutable history event. Events are never updated or deleted."""
    event = HistoryEvent(
        device_id=device_id,
        borrower_id=borrower_id,
        loan_id=loan_id,
        event_type=event_type,
        date=as_utc(event_date) if event_date else utcnow(),
        condition=condition,
        notes=notes,
    )
    if accessories is not None:
        event.with_charger = accessories.charger
        event.with_cable = accessories.cable
        event.with_box = accessories.box
    db.add(event)
    await db.flush()
    return event


# ─── State transitions ──────────────────────────────────────────


async def create_loan(
    db: AsyncSession,
    device_id: str,
    borrower_id: str,
    condition: DeviceCondition,
    accessories: Optional[Accessories],
    date_borrowed: datetime,
    expected_return_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> Loan:
    """Lend a device to a borrower.

    The device must exist, be Serviceable and have no open loan; the
    borrower must exist. Device status and condition are left untouched:
    being on loan is derived from the open loan itself.
    """
    device = await _get_device(db, device_id, lock=True)
    if device.status != DeviceStatus.SERVICEABLE:
        logger.warning(f"Borrow rejected: device={device_id} status={device.status.value}")
        raise ConflictError(
            ConflictReason.DEVICE_NOT_SERVICEABLE,
            f"Device is not serviceable: {device.status.value}",
        )

    if await _get_open_loan(db, device_id) is not None:
        logger.warning(f"Borrow rejected: device={device_id} already has an open loan")
        raise ConflictError(ConflictReason.DEVICE_ALREADY_BORROWED, "Device is already borrowed")

    await _get_borrower(db, borrower_id)

    date_borrowed = as_utc(date_borrowed)
    if expected_return_date is not None and expected_return_date < date_borrowed.date():
        logger.warning(f"Borrow rejected: device={device_id} expected return before borrow date")
        raise ValidationFailure("Expected return date cannot be before the borrow date")

    accessories = accessories or Accessories()
    loan = Loan(
        device_id=device_id,
        borrower_id=borrower_id,
        date_borrowed=date_borrowed,
        expected_return_date=expected_return_date,
        with_charger=accessories.charger,
        with_cable=accessories.cable,
        with_box=accessories.box,
        condition=condition,
        notes=notes,
        is_returned=False,
    )
    db.add(loan)
    try:
        await db.flush()
    except IntegrityError as e:
        # A concurrent borrow committed first; the partial unique index caught it
        logger.warning(f"Borrow rejected by open-loan index: device={device_id}")
        raise ConflictError(
            ConflictReason.DEVICE_ALREADY_BORROWED, "Device is already borrowed"
        ) from e

    await append_history_event(
        db,
        device_id,
        HistoryEventType.BORROWED,
        event_date=date_borrowed,
        borrower_id=borrower_id,
        loan_id=loan.id,
        condition=condition,
        accessories=accessories,
        notes=notes or "Device borrowed",
    )
    await db.refresh(loan)

    logger.info(
        f"Loan created: id={loan.id}",
        extra=log_fields(loan_id=loan.id, device_id=device_id, borrower_id=borrower_id),
    )
    return loan


async def process_return(
    db: AsyncSession,
    loan_id: str,
    return_date: datetime,
    return_condition: DeviceCondition,
    return_notes: Optional[str] = None,
) -> Loan:
    """Close an open loan and record the condition the device came back in."""
    loan = await _get_loan(db, loan_id)
    # Lock order is device first, then loan, matching create_loan
    device = await _get_device(db, loan.device_id, lock=True)
    loan = await _get_loan(db, loan_id, lock=True)

    if loan.is_returned:
        logger.warning(f"Return rejected: loan={loan_id} already closed")
        raise ConflictError(ConflictReason.ALREADY_RETURNED, "Device has already been returned")

    return_date = as_utc(return_date)
    if return_date < as_utc(loan.date_borrowed):
        logger.warning(f"Return rejected: loan={loan_id} return date before borrow date")
        raise ValidationFailure("Return date cannot be before the borrow date")

    loan.is_returned = True
    loan.return_date = return_date
    loan.return_condition = return_condition
    loan.return_notes = return_notes
    device.condition = return_condition

    await append_history_event(
        db,
        device.id,
        HistoryEventType.RETURNED,
        event_date=return_date,
        borrower_id=loan.borrower_id,
        loan_id=loan.id,
        condition=return_condition,
        accessories=Accessories(**loan.accessories),
        notes=return_notes or "Device returned",
    )
    await db.refresh(loan)

    logger.info(
        f"Loan returned: id={loan_id} condition={return_condition.value}",
        extra=log_fields(loan_id=loan_id, device_id=device.id, borrower_id=loan.borrower_id),
    )
    return loan


async def report_loss(
    db: AsyncSession,
    device_id: str,
    borrower_id: str,
    date_reported: datetime,
    details: Optional[str] = None,
    loan_id: Optional[str] = None,
    document_path: Optional[str] = None,
) -> LossReport:
    """Declare a device lost.

    The device becomes Lost (its condition is kept). The loan open at the time
    of loss is closed without a return condition: the one named by ``loan_id``,
    or when none is named, whichever loan is currently open for the device.
    """
    device = await _get_device(db, device_id, lock=True)
    if device.status == DeviceStatus.LOST:
        logger.warning(f"Loss report rejected: device={device_id} already lost")
        raise ConflictError(
            ConflictReason.DEVICE_ALREADY_LOST, "Device has already been reported lost"
        )

    await _get_borrower(db, borrower_id)
    date_reported = as_utc(date_reported)

    if loan_id is not None:
        loan = await _get_loan(db, loan_id, lock=True)
        if loan.device_id != device.id:
            logger.warning(f"Loss report rejected: loan={loan_id} belongs to another device")
            raise ValidationFailure(f"Loan {loan_id} does not belong to device {device_id}")
    else:
        loan = await _get_open_loan(db, device_id)

    open_loan = loan if loan is not None and not loan.is_returned else None
    if open_loan is not None and date_reported < as_utc(open_loan.date_borrowed):
        logger.warning(f"Loss report rejected: device={device_id} loss date before borrow date")
        raise ValidationFailure("Loss date cannot be before the borrow date")
    if open_loan is not None and open_loan.borrower_id != borrower_id:
        logger.warning(f"Loss report rejected: loan={open_loan.id} is held by another borrower")
        raise ValidationFailure(
            f"Loan {open_loan.id} belongs to borrower {open_loan.borrower_id}, not {borrower_id}"
        )

    device.status = DeviceStatus.LOST
    if open_loan is not None:
        open_loan.is_returned = True
        open_loan.return_date = date_reported
        open_loan.return_notes = LOSS_RETURN_NOTES

    report = LossReport(
        device_id=device_id,
        borrower_id=borrower_id,
        loan_id=loan.id if loan is not None else None,
        date_reported=date_reported,
        details=details,
        document_path=document_path,
    )
    db.add(report)
    await db.flush()

    await append_history_event(
        db,
        device_id,
        HistoryEventType.LOST,
        event_date=date_reported,
        borrower_id=borrower_id,
        loan_id=report.loan_id,
        notes=details or "Device reported lost",
    )
    await db.refresh(report)

    logger.info(
        f"Device reported lost: report={report.id}",
        extra=log_fields(
            device_id=device_id,
            borrower_id=borrower_id,
            loan_id=open_loan.id if open_loan else None,
        ),
    )
    return report


async def record_status_or_condition_edit(
    db: AsyncSession,
    device_id: str,
    new_status: Optional[DeviceStatus] = None,
    new_condition: Optional[DeviceCondition] = None,
) -> Device:
    """Administrative correction of a device's status and/or condition.

    One history event is appended per field whose value actually changes.
    Lost is not a valid target: a loss goes through ``report_loss`` so the
    open loan is closed and a LossReport is kept.
    """
    device = await _get_device(db, device_id, lock=True)
    old_status, old_condition = device.status, device.condition

    status_changed = new_status is not None and new_status != old_status
    condition_changed = new_condition is not None and new_condition != old_condition
    if not status_changed and not condition_changed:
        return device

    if status_changed and new_status == DeviceStatus.LOST:
        logger.warning(f"Edit rejected: device={device_id} cannot be marked Lost by an edit")
        raise ValidationFailure("A device becomes Lost only through a loss report")

    if status_changed:
        if old_status == DeviceStatus.LOST:
            logger.warning(
                f"Lost device reinstated: device={device_id} new_status={new_status.value}",
                extra=log_fields(device_id=device_id),
            )
        device.status = new_status
    if condition_changed:
        device.condition = new_condition

    if status_changed:
        await append_history_event(
            db,
            device_id,
            HistoryEventType.STATUS_CHANGE,
            condition=device.condition,
            notes=f"Status changed from {old_status.value} to {new_status.value}",
        )
    if condition_changed:
        await append_history_event(
            db,
            device_id,
            HistoryEventType.CONDITION_CHANGE,
            condition=new_condition,
            notes=f"Condition changed from {old_condition.value} to {new_condition.value}",
        )
    await db.refresh(device)

    logger.info(
        f"Device edited: id={device_id} status={device.status.value} "
        f"condition={device.condition.value}"
    )
    return device


# ─── Queries ────────────────────────────────────────────────────


async def is_device_available(db: AsyncSession, device_id: str) -> bool:
    """A device can be lent iff it is Serviceable and has no open loan."""
    device = await _get_device(db, device_id)
    if device.status != DeviceStatus.SERVICEABLE:
        return False
    return await _get_open_loan(db, device_id) is None


async def list_open_loans(db: AsyncSession) -> List[Loan]:
    result = await db.execute(
        select(Loan).where(Loan.is_returned.is_(False)).order_by(Loan.date_borrowed.desc())
    )
    return list(result.scalars().all())


async def list_all_loans(db: AsyncSession, is_returned: Optional[bool] = None) -> List[Loan]:
    query = select(Loan).order_by(Loan.date_borrowed.desc())
    if is_returned is not None:
        query = query.where(Loan.is_returned.is_(is_returned))
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_loans_for_device(db: AsyncSession, device_id: str) -> List[Loan]:
    await _get_device(db, device_id)
    result = await db.execute(
        select(Loan).where(Loan.device_id == device_id).order_by(Loan.date_borrowed.desc())
    )
    return list(result.scalars().all())


async def list_loans_for_borrower(db: AsyncSession, borrower_id: str) -> List[Loan]:
    await _get_borrower(db, borrower_id)
    result = await db.execute(
        select(Loan).where(Loan.borrower_id == borrower_id).order_by(Loan.date_borrowed.desc())
    )
    return list(result.scalars().all())


async def get_device_history(db: AsyncSession, device_id: str) -> List[HistoryEvent]:
    """History events for a device, newest first."""
    await _get_device(db, device_id)
    result = await db.execute(
        select(HistoryEvent)
        .where(HistoryEvent.device_id == device_id)
        .order_by(HistoryEvent.date.desc(), HistoryEvent.created_at.desc())
    )
    return list(result.scalars().all())


async def get_loan_by_id(db: AsyncSession, loan_id: str) -> Optional[Loan]:
    if not is_valid_id(loan_id):
        return None
    result = await db.execute(select(Loan).where(Loan.id == loan_id))
    return result.scalar_one_or_none()


async def get_loans(
    db: AsyncSession,
    page: int = 1,
    size: int = 20,
    device_id: Optional[str] = None,
    borrower_id: Optional[str] = None,
    is_returned: Optional[bool] = None,
    sort_by: str = "date_borrowed",
    sort_order: str = "desc",
) -> Tuple[List[Loan], int]:
    """List loans with filtering, sorting, and pagination."""
    query = select(Loan)
    count_query = select(func.count()).select_from(Loan)

    if device_id:
        query = query.where(Loan.device_id == device_id)
        count_query = count_query.where(Loan.device_id == device_id)
    if borrower_id:
        query = query.where(Loan.borrower_id == borrower_id)
        count_query = count_query.where(Loan.borrower_id == borrower_id)
    if is_returned is not None:
        query = query.where(Loan.is_returned.is_(is_returned))
        count_query = count_query.where(Loan.is_returned.is_(is_returned))

    sort_column = getattr(Loan, sort_by if sort_by in LOAN_SORT_FIELDS else "date_borrowed")
    if sort_order == "asc":
        query = query.order_by(sort_column.asc())
    else:
        query = query.order_by(sort_column.desc())

    offset = (page - 1) * size
    query = query.offset(offset).limit(size)

    result = await db.execute(query)
    loans = list(result.scalars().all())

    total_result = await db.execute(count_query)
    total = total_result.scalar()

    return loans, total


async def get_loss_reports(db: AsyncSession) -> List[LossReport]:
    result = await db.execute(select(LossReport).order_by(LossReport.date_reported.desc()))
    return list(result.scalars().all())


async def get_loss_report_by_id(db: AsyncSession, report_id: str) -> Optional[LossReport]:
    if not is_valid_id(report_id):
        return None
    result = await db.execute(select(LossReport).where(LossReport.id == report_id))
    return result.scalar_one_or_none()


def calculate_pages(total: int, size: int) -> int:
    return math.ceil(total / size) if size > 0 else 0
