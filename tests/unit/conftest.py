"""
Shared fixtures for unit tests.
Uses an in-memory SQLite database for fast isolated testing.
"""
from datetime import datetime, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.db.models import (
    Base, Admin, Borrower, Device, DeviceStatus, DeviceCondition, Loan,
)
from tablet_loans.core.security import hash_password
from tablet_loans.db.session import build_engine, build_session_factory


@pytest_asyncio.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """A file-backed SQLite engine, for tests that need separate connections."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncSession:
    """Provide a transactional database session for each test."""
    async with build_session_factory(async_engine)() as session:
        yield session
        await session.rollback()


# ─── Helper factories ───────────────────────────────────────────


@pytest.fixture
def make_admin():
    """Factory fixture to create Admin instances."""
    def _make(
        username: str = None,
        password: str = "testpassword123",
        is_built_in: bool = False,
    ) -> Admin:
        return Admin(
            id=str(uuid4()),
            username=username or f"admin-{uuid4().hex[:8]}",
            hashed_password=hash_password(password),
            is_built_in=is_built_in,
        )
    return _make


@pytest.fixture
def make_device():
    """Factory fixture to create Device instances."""
    def _make(
        brand: str = "Samsung",
        model: str = "Galaxy Tab A8",
        serial_number: str = None,
        imei: str = None,
        status: DeviceStatus = DeviceStatus.SERVICEABLE,
        condition: DeviceCondition = DeviceCondition.GOOD,
        has_charger: bool = True,
        has_cable: bool = True,
        has_box: bool = False,
    ) -> Device:
        return Device(
            id=str(uuid4()),
            brand=brand,
            model=model,
            color="Gray",
            serial_number=serial_number or f"SN-{uuid4().hex[:10].upper()}",
            imei=imei,
            status=status,
            condition=condition,
            has_charger=has_charger,
            has_cable=has_cable,
            has_box=has_box,
        )
    return _make


@pytest.fixture
def make_borrower():
    """Factory fixture to create Borrower instances."""
    def _make(
        student_number: str = None,
        first_name: str = "Juan",
        last_name: str = "Dela Cruz",
        program_name: str = "BS Computer Science",
        year_level: int = 1,
    ) -> Borrower:
        return Borrower(
            id=str(uuid4()),
            student_number=student_number or f"2024{uuid4().int % 10**6:06d}",
            first_name=first_name,
            last_name=last_name,
            full_name=f"{first_name} {last_name}",
            program_name=program_name,
            year_level=year_level,
        )
    return _make


@pytest.fixture
def make_loan():
    """Factory fixture to create Loan instances."""
    def _make(
        device_id: str = None,
        borrower_id: str = None,
        date_borrowed: datetime = None,
        condition: DeviceCondition = DeviceCondition.GOOD,
        is_returned: bool = False,
        return_date: datetime = None,
    ) -> Loan:
        return Loan(
            id=str(uuid4()),
            device_id=device_id or str(uuid4()),
            borrower_id=borrower_id or str(uuid4()),
            date_borrowed=date_borrowed or datetime.now(timezone.utc),
            condition=condition,
            with_charger=True,
            with_cable=True,
            with_box=False,
            is_returned=is_returned,
            return_date=return_date,
        )
    return _make
