"""
Functional tests: Edge cases.
Double lending, double return, unserviceable devices, bad ids and dates, delete protection.
"""
import pytest
from httpx import AsyncClient
from uuid import uuid4

from tests.functional.conftest import auth_header, create_borrower, create_device, lend


class TestLendingConflicts:

    @pytest.mark.asyncio
    async def test_second_loan_for_borrowed_device(self, client: AsyncClient, admin_user):
        """Should return 409 with the already-borrowed reason."""
        token = admin_user["token"]
        device = await create_device(client, token)
        s1 = await create_borrower(client, token)
        s2 = await create_borrower(client, token)

        assert (await lend(client, token, device["id"], s1["id"])).status_code == 201
        resp = await lend(client, token, device["id"], s2["id"])

        assert resp.status_code == 409
        assert resp.json()["detail"]["reason"] == "device_already_borrowed"

        open_resp = await client.get("/api/v1/loans/open", headers=auth_header(token))
        assert len(open_resp.json()) == 1

    @pytest.mark.asyncio
    async def test_unserviceable_device(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token, status="Unserviceable")
        borrower = await create_borrower(client, token)

        resp = await lend(client, token, device["id"], borrower["id"])
        assert resp.status_code == 409
        assert resp.json()["detail"]["reason"] == "device_not_serviceable"
        assert "Unserviceable" in resp.json()["detail"]["message"]

        history = await client.get(
            f"/api/v1/devices/{device['id']}/history", headers=auth_header(token)
        )
        assert [e["event_type"] for e in history.json()] == ["created"]

    @pytest.mark.asyncio
    async def test_double_return(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        borrower = await create_borrower(client, token)
        loan = (await lend(client, token, device["id"], borrower["id"])).json()

        body = {"return_condition": "Good", "return_date": "2024-02-01T00:00:00Z"}
        first = await client.post(
            f"/api/v1/loans/{loan['id']}/return", json=body, headers=auth_header(token)
        )
        second = await client.post(
            f"/api/v1/loans/{loan['id']}/return",
            json={"return_condition": "Poor"},
            headers=auth_header(token),
        )

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["detail"]["reason"] == "already_returned"

        detail = await client.get(f"/api/v1/devices/{device['id']}", headers=auth_header(token))
        assert detail.json()["condition"] == "Good"

    @pytest.mark.asyncio
    async def test_lent_device_cannot_be_edited_to_lost(self, client: AsyncClient, admin_user):
        """Losses go through a loss report, which also closes the loan."""
        token = admin_user["token"]
        device = await create_device(client, token)
        borrower = await create_borrower(client, token)
        assert (await lend(client, token, device["id"], borrower["id"])).status_code == 201

        resp = await client.patch(
            f"/api/v1/devices/{device['id']}/status",
            json={"status": "Lost"},
            headers=auth_header(token),
        )
        assert resp.status_code == 400

        detail = await client.get(f"/api/v1/devices/{device['id']}", headers=auth_header(token))
        assert detail.json()["status"] == "Serviceable"
        open_resp = await client.get("/api/v1/loans/open", headers=auth_header(token))
        assert len(open_resp.json()) == 1


class TestNotFound:

    @pytest.mark.asyncio
    async def test_lend_unknown_device(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        borrower = await create_borrower(client, token)
        resp = await lend(client, token, str(uuid4()), borrower["id"])
        assert resp.status_code == 404
        assert "Device not found" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_lend_unknown_borrower(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        resp = await lend(client, token, device["id"], "not-a-uuid")
        assert resp.status_code == 404
        assert "Borrower not found" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_return_unknown_loan(self, client: AsyncClient, admin_user):
        resp = await client.post(
            f"/api/v1/loans/{uuid4()}/return",
            json={"return_condition": "Good"},
            headers=auth_header(admin_user["token"]),
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_history_unknown_device(self, client: AsyncClient, admin_user):
        resp = await client.get(
            f"/api/v1/devices/{uuid4()}/history", headers=auth_header(admin_user["token"])
        )
        assert resp.status_code == 404


class TestDateValidation:

    @pytest.mark.asyncio
    async def test_return_before_borrow(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        borrower = await create_borrower(client, token)
        loan = (await lend(client, token, device["id"], borrower["id"])).json()

        resp = await client.post(
            f"/api/v1/loans/{loan['id']}/return",
            json={"return_condition": "Good", "return_date": "2023-12-31T00:00:00Z"},
            headers=auth_header(token),
        )
        assert resp.status_code == 400

        still_open = await client.get("/api/v1/loans/open", headers=auth_header(token))
        assert [l["id"] for l in still_open.json()] == [loan["id"]]

    @pytest.mark.asyncio
    async def test_expected_return_before_borrow(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        borrower = await create_borrower(client, token)

        resp = await lend(
            client, token, device["id"], borrower["id"], expected_return_date="2024-01-01"
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_condition_rejected(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        borrower = await create_borrower(client, token)

        resp = await lend(client, token, device["id"], borrower["id"], condition="Shiny")
        assert resp.status_code == 422


class TestDeleteProtection:

    @pytest.mark.asyncio
    async def test_device_with_loan_history(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        borrower = await create_borrower(client, token)
        await lend(client, token, device["id"], borrower["id"])

        resp = await client.delete(f"/api/v1/devices/{device['id']}", headers=auth_header(token))
        assert resp.status_code == 409

        resp = await client.delete(
            f"/api/v1/borrowers/{borrower['id']}", headers=auth_header(token)
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_device_with_status_history(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        resp = await client.patch(
            f"/api/v1/devices/{device['id']}/status",
            json={"status": "Unserviceable"},
            headers=auth_header(token),
        )
        assert resp.status_code == 200

        resp = await client.delete(f"/api/v1/devices/{device['id']}", headers=auth_header(token))
        assert resp.status_code == 409

        resp = await client.get(
            f"/api/v1/devices/{device['id']}/history", headers=auth_header(token)
        )
        assert resp.status_code == 200
        assert "status_change" in [e["event_type"] for e in resp.json()]

    @pytest.mark.asyncio
    async def test_unused_records_deleted(self, client: AsyncClient, admin_user):
        token = admin_user["token"]
        device = await create_device(client, token)
        borrower = await create_borrower(client, token)

        assert (
            await client.delete(f"/api/v1/devices/{device['id']}", headers=auth_header(token))
        ).status_code == 204
        assert (
            await client.delete(f"/api/v1/borrowers/{borrower['id']}", headers=auth_header(token))
        ).status_code == 204
        assert (
            await client.get(f"/api/v1/devices/{device['id']}", headers=auth_header(token))
        ).status_code == 404
