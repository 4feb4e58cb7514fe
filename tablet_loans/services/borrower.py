import math
from typing import Optional, List, Tuple, Dict, Set, Iterable

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.core.logging import get_logger
from tablet_loans.db.models import Borrower, Loan, LossReport
from tablet_loans.schemas.borrower import BorrowerCreate
from tablet_loans.utils.ids import is_valid_id

logger = get_logger("services.borrower")

BORROWER_SORT_FIELDS = {
    "student_number",
    "last_name",
    "first_name",
    "full_name",
    "program_name",
    "year_level",
    "created_at",
}

NAME_FIELDS = ("first_name", "middle_name", "last_name", "suffix_name")


async def create_borrower(db: AsyncSession, data: dict) -> Borrower:
    """Create a new borrower."""
    existing = await get_borrower_by_student_number(db, data["student_number"])
    if existing:
        raise ValueError(
            f"A borrower with student number {data['student_number']} already exists"
        )

    borrower = Borrower(**data)
    db.add(borrower)
    await db.flush()
    await db.refresh(borrower)

    logger.info(f"Borrower created: id={borrower.id} student_number={borrower.student_number}")
    return borrower


async def get_borrowers(
    db: AsyncSession,
    page: int = 1,
    size: int = 20,
    search: Optional[str] = None,
    program_code: Optional[str] = None,
    year_level: Optional[int] = None,
    sort_by: str = "last_name",
    sort_order: str = "asc",
) -> Tuple[List[Borrower], int]:
    """List borrowers with filtering, sorting, and pagination."""
    query = select(Borrower)
    count_query = select(func.count()).select_from(Borrower)

    if search:
        search_filter = or_(
            Borrower.full_name.ilike(f"%{search}%"),
            Borrower.student_number.ilike(f"%{search}%"),
            Borrower.program_name.ilike(f"%{search}%"),
        )
        query = query.where(search_filter)
        count_query = count_query.where(search_filter)
    if program_code:
        query = query.where(Borrower.program_code == program_code)
        count_query = count_query.where(Borrower.program_code == program_code)
    if year_level is not None:
        query = query.where(Borrower.year_level == year_level)
        count_query = count_query.where(Borrower.year_level == year_level)

    sort_column = getattr(Borrower, sort_by if sort_by in BORROWER_SORT_FIELDS else "last_name")
    if sort_order == "desc":
        query = query.order_by(sort_column.desc())
    else:
        query = query.order_by(sort_column.asc())

    offset = (page - 1) * size
    query = query.offset(offset).limit(size)

    result = await db.execute(query)
    borrowers = list(result.scalars().all())

    total_result = await db.execute(count_query)
    total = total_result.scalar()

    return borrowers, total


async def get_active_loan_counts(db: AsyncSession, borrower_ids: List[str]) -> Dict[str, int]:
    """Number of open loans per borrower, for the given borrowers."""
    if not borrower_ids:
        return {}
    result = await db.execute(
        select(Loan.borrower_id, func.count())
        .where(Loan.borrower_id.in_(borrower_ids), Loan.is_returned.is_(False))
        .group_by(Loan.borrower_id)
    )
    return {borrower_id: count for borrower_id, count in result.all()}


async def get_borrower_by_id(db: AsyncSession, borrower_id: str) -> Optional[Borrower]:
    """Get a single borrower by ID."""
    if not is_valid_id(borrower_id):
        return None
    result = await db.execute(select(Borrower).where(Borrower.id == borrower_id))
    return result.scalar_one_or_none()


async def get_borrower_by_student_number(
    db: AsyncSession, student_number: str
) -> Optional[Borrower]:
    result = await db.execute(
        select(Borrower).where(Borrower.student_number == student_number)
    )
    return result.scalar_one_or_none()


async def update_borrower(
    db: AsyncSession, borrower_id: str, data: dict
) -> Optional[Borrower]:
    """Update a borrower. The full name is rebuilt when a name part changes."""
    borrower = await get_borrower_by_id(db, borrower_id)
    if not borrower:
        return None

    new_number = data.get("student_number")
    if new_number and new_number != borrower.student_number:
        if await get_borrower_by_student_number(db, new_number):
            raise ValueError(f"A borrower with student number {new_number} already exists")

    for key, value in data.items():
        if value is not None:
            setattr(borrower, key, value)

    if not data.get("full_name") and any(data.get(f) is not None for f in NAME_FIELDS):
        parts = [getattr(borrower, f) for f in NAME_FIELDS]
        borrower.full_name = " ".join(p for p in parts if p)

    await db.flush()
    await db.refresh(borrower)

    logger.info(f"Borrower updated: id={borrower_id}")
    return borrower


async def delete_borrower(db: AsyncSession, borrower_id: str) -> bool:
    """Delete a borrower who has never borrowed a device."""
    borrower = await get_borrower_by_id(db, borrower_id)
    if not borrower:
        return False

    loan_count = await db.execute(
        select(func.count()).select_from(Loan).where(Loan.borrower_id == borrower_id)
    )
    report_count = await db.execute(
        select(func.count()).select_from(LossReport).where(LossReport.borrower_id == borrower_id)
    )
    if loan_count.scalar() or report_count.scalar():
        raise ValueError("Cannot delete a borrower with loan history")

    await db.delete(borrower)
    await db.flush()

    logger.info(f"Borrower deleted: id={borrower_id}")
    return True


async def find_existing_student_numbers(db: AsyncSession, numbers: Iterable[str]) -> Set[str]:
    numbers = list(numbers)
    if not numbers:
        return set()
    result = await db.execute(
        select(Borrower.student_number).where(Borrower.student_number.in_(numbers))
    )
    return set(result.scalars().all())


async def bulk_create_borrowers(
    db: AsyncSession, items: List[BorrowerCreate]
) -> Tuple[List[Borrower], List[str]]:
    """Insert imported borrowers, skipping student numbers that already exist.

    Returns the created borrowers and the skipped student numbers.
    """
    seen = await find_existing_student_numbers(db, (item.student_number for item in items))

    created: List[Borrower] = []
    duplicates: List[str] = []
    for item in items:
        if item.student_number in seen:
            duplicates.append(item.student_number)
            continue
        seen.add(item.student_number)
        borrower = Borrower(**item.model_dump())
        db.add(borrower)
        created.append(borrower)

    await db.flush()
    for borrower in created:
        await db.refresh(borrower)

    logger.info(f"Bulk borrower import: created={len(created)} duplicates={len(duplicates)}")
    return created, duplicates


def calculate_pages(total: int, size: int) -> int:
    return math.ceil(total / size) if size > 0 else 0
