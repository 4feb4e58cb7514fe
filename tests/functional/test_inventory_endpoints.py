"""
Functional tests: Device and borrower endpoints.
CRUD, CSV import/export/templates, status corrections and two-step borrower import.
"""
import pytest
from httpx import AsyncClient

from tests.functional.conftest import auth_header, create_borrower, create_device, lend


DEVICE_CSV = (
    "brand,model,serialNumber,imei,status,condition,hasCharger,hasCable,hasBox\n"
    "Apple,iPad 9,CSV-001,,Serviceable,New / Excellent,true,true,false\n"
    "Samsung,Galaxy Tab S7,CSV-002,354912078906753,Serviceable,Good,yes,no,no\n"
    "Samsung,,CSV-003,,Serviceable,Good,true,true,true\n"
)

BORROWER_CSV = (
    "Student No.,Last Name,First Name,Program Name,Year Level\n"
    "2024-1001,Reyes,Ana,BS Nursing,1\n"
    "2024-1002,Santos,Ben,BS Nursing,2\n"
)


class TestDeviceCrud:

    @pytest.mark.asyncio
    async def test_duplicate_serial(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        await create_device(client, token, serial_number="DUP-SN")
        resp = await client.post(
            "/api/v1/devices",
            json={"brand": "X", "model": "Y", "serial_number": "DUP-SN"},
            headers=auth_header(token),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_update_records_status_change(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)

        resp = await client.put(
            f"/api/v1/devices/{device['id']}",
            json={"color": "Blue", "status": "Unserviceable"},
            headers=auth_header(token),
        )
        assert resp.status_code == 200
        assert resp.json()["color"] == "Blue"
        assert resp.json()["status"] == "Unserviceable"

        history = await client.get(
            f"/api/v1/devices/{device['id']}/history", headers=auth_header(token)
        )
        assert [e["event_type"] for e in history.json()].count("status_change") == 1

    @pytest.mark.asyncio
    async def test_status_patch_noop_and_both_fields(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token, status="Unserviceable")

        same = await client.patch(
            f"/api/v1/devices/{device['id']}/status",
            json={"status": "Unserviceable"},
            headers=auth_header(token),
        )
        assert same.status_code == 200

        both = await client.patch(
            f"/api/v1/devices/{device['id']}/status",
            json={"status": "Serviceable", "condition": "Poor"},
            headers=auth_header(token),
        )
        assert both.json()["condition"] == "Poor"

        history = await client.get(
            f"/api/v1/devices/{device['id']}/history", headers=auth_header(token)
        )
        types = sorted(e["event_type"] for e in history.json())
        assert types == ["condition_change", "created", "status_change"]

    @pytest.mark.asyncio
    async def test_status_patch_requires_a_field(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        resp = await client.patch(
            f"/api/v1/devices/{device['id']}/status", json={}, headers=auth_header(token)
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_missing_device(self, client: AsyncClient, admin_user):
        resp = await client.get("/api/v1/devices/nope", headers=auth_header(admin_user["token"]))
        assert resp.status_code == 404


class TestDeviceCsv:

    @pytest.mark.asyncio
    async def test_import(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        await create_device(client, token, serial_number="CSV-002")

        resp = await client.post(
            "/api/v1/devices/import",
            files={"file": ("devices.csv", DEVICE_CSV.encode(), "text/csv")},
            headers=auth_header(token),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert [d["serial_number"] for d in body["created"]] == ["CSV-001"]
        assert body["created"][0]["condition"] == "Excellent"
        assert body["duplicates"] == ["CSV-002"]
        assert [e["line"] for e in body["errors"]] == [4]

    @pytest.mark.asyncio
    async def test_import_empty_file(self, client: AsyncClient, admin_user):
        resp = await client.post(
            "/api/v1/devices/import",
            files={"file": ("devices.csv", b"", "text/csv")},
            headers=auth_header(admin_user["token"]),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_export_includes_current_borrower(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token, serial_number="EXP-1")
        borrower = await create_borrower(client, token, student_number="2024-7777")
        await lend(client, token, device["id"], borrower["id"])

        resp = await client.get("/api/v1/devices/export", headers=auth_header(token))
        assert resp.status_code == 200
        assert "attachment" in resp.headers["content-disposition"]
        lines = resp.text.strip().splitlines()
        assert lines[0].startswith("id,brand,model")
        assert "EXP-1" in lines[1]
        assert "(2024-7777)" in lines[1]

    @pytest.mark.asyncio
    async def test_template(self, client: AsyncClient, admin_user):
        resp = await client.get("/api/v1/devices/template", headers=auth_header(admin_user["token"]))
        assert resp.status_code == 200
        assert resp.text.splitlines()[0].startswith("brand,model,color,serialNumber")


class TestBorrowerCrud:

    @pytest.mark.asyncio
    async def test_update_rebuilds_full_name(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        borrower = await create_borrower(client, token)

        resp = await client.put(
            f"/api/v1/borrowers/{borrower['id']}",
            json={"middle_name": "Protacio"},
            headers=auth_header(token),
        )
        assert resp.status_code == 200
        assert resp.json()["full_name"] == "Juan Protacio Dela Cruz"

    @pytest.mark.asyncio
    async def test_duplicate_student_number(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        await create_borrower(client, token, student_number="2024-DUP")
        resp = await client.post(
            "/api/v1/borrowers",
            json={
                "student_number": "2024-DUP", "first_name": "A", "last_name": "B",
                "program_name": "BSIT",
            },
            headers=auth_header(token),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_borrower_loans(self, client: AsyncClient, admin_user):
        resp = await client.get(
            "/api/v1/borrowers/unknown/loans", headers=auth_header(admin_user["token"])
        )
        assert resp.status_code == 404


class TestBorrowerImport:

    @pytest.mark.asyncio
    async def test_preview_then_confirm(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        await create_borrower(client, token, student_number="2024-1002")
        files = {"file": ("students.csv", BORROWER_CSV.encode(), "text/csv")}

        preview = await client.post(
            "/api/v1/borrowers/import", files=files, headers=auth_header(token)
        )
        assert preview.status_code == 200
        body = preview.json()
        assert body["total"] == 2
        assert body["new"] == 1
        assert body["duplicates"] == ["2024-1002"]
        assert body["records"][0]["full_name"] == "Ana Reyes"

        listing = await client.get("/api/v1/borrowers", headers=auth_header(token))
        assert listing.json()["total"] == 1

        confirm = await client.post(
            "/api/v1/borrowers/import?confirm=true", files=files, headers=auth_header(token)
        )
        assert confirm.status_code == 201
        assert [b["student_number"] for b in confirm.json()["created"]] == ["2024-1001"]
        assert confirm.json()["duplicates"] == ["2024-1002"]

        listing = await client.get("/api/v1/borrowers", headers=auth_header(token))
        assert listing.json()["total"] == 2

    @pytest.mark.asyncio
    async def test_template(self, client: AsyncClient, admin_user):
        resp = await client.get(
            "/api/v1/borrowers/template", headers=auth_header(admin_user["token"])
        )
        assert resp.status_code == 200
        assert resp.text.startswith("Student No.,Last Name,First Name")
