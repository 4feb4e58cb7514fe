"""
Shared fixtures for functional tests.
Uses httpx.AsyncClient against the real FastAPI app with an in-memory SQLite DB.
"""
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from tablet_loans.db.models import Base, Admin
from tablet_loans.core.config import settings
from tablet_loans.core.security import hash_password
from tablet_loans.db import session as db_session_module
from tablet_loans.main import app


# ─── DB override ────────────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Create an in-memory SQLite engine for functional testing."""
    engine = db_session_module.build_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_factory(test_engine):
    """Session factory bound to the test engine."""
    return db_session_module.build_session_factory(test_engine)


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Keep uploaded loss documents inside the test's temp directory."""
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


@pytest_asyncio.fixture
async def client(test_session_factory):
    """Provide an httpx.AsyncClient with DB overridden to use the test DB."""

    async def override_get_db():
        async with test_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[db_session_module.get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Auth helpers ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def admin_user(client: AsyncClient, test_session_factory):
    """Create an admin directly in DB, log in, and return its data and token."""
    async with test_session_factory() as session:
        admin = Admin(
            id=str(uuid4()),
            username=f"admin-{uuid4().hex[:6]}",
            hashed_password=hash_password("adminpass123"),
            is_built_in=False,
        )
        session.add(admin)
        await session.commit()

    resp = await client.post(
        "/api/v1/auth/login",
        data={"username": admin.username, "password": "adminpass123"},
    )
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    return {"id": admin.id, "username": admin.username, "password": "adminpass123", "token": token}


def auth_header(token: str) -> dict:
    """Return an Authorization header dict."""
    return {"Authorization": f"Bearer {token}"}


# ─── Data helpers ───────────────────────────────────────────────

async def create_device(client: AsyncClient, token: str, **overrides) -> dict:
    data = {
        "brand": "Samsung",
        "model": "Galaxy Tab A8",
        "serial_number": f"SN-{uuid4().hex[:10].upper()}",
        "has_charger": True,
        "has_cable": True,
    }
    data.update(overrides)
    resp = await client.post("/api/v1/devices", json=data, headers=auth_header(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_borrower(client: AsyncClient, token: str, **overrides) -> dict:
    data = {
        "student_number": f"2024-{uuid4().hex[:6]}",
        "first_name": "Juan",
        "last_name": "Dela Cruz",
        "program_code": "BSCS",
        "program_name": "BS Computer Science",
        "year_level": 2,
    }
    data.update(overrides)
    resp = await client.post("/api/v1/borrowers", json=data, headers=auth_header(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def lend(client: AsyncClient, token: str, device_id: str, borrower_id: str, **overrides):
    data = {
        "device_id": device_id,
        "borrower_id": borrower_id,
        "condition": "Good",
        "accessories": {"charger": True, "cable": False, "box": False},
        "date_borrowed": "2024-01-10T09:00:00Z",
    }
    data.update(overrides)
    return await client.post("/api/v1/loans", json=data, headers=auth_header(token))
