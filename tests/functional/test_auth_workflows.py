"""
Functional tests: Authentication.
Login, protected routes, logout revocation and password change.
"""
import pytest
from httpx import AsyncClient

from tests.functional.conftest import auth_header


class TestLogin:

    @pytest.mark.asyncio
    async def test_wrong_password(self, client: AsyncClient, admin_user):
        resp = await client.post(
            "/api/v1/auth/login",
            data={"username": admin_user["username"], "password": "nope"},
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_username(self, client: AsyncClient):
        resp = await client.post(
            "/api/v1/auth/login", data={"username": "ghost", "password": "whatever"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, admin_user):
        resp = await client.get("/api/v1/auth/me", headers=auth_header(admin_user["token"]))
        assert resp.status_code == 200
        assert resp.json()["username"] == admin_user["username"]
        assert "hashed_password" not in resp.json()


class TestProtectedRoutes:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        "/api/v1/devices",
        "/api/v1/borrowers",
        "/api/v1/loans",
        "/api/v1/loss-reports",
        "/api/v1/dashboard/stats",
    ])
    async def test_requires_token(self, client: AsyncClient, path):
        resp = await client.get(path)
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client: AsyncClient):
        resp = await client.get("/api/v1/devices", headers=auth_header("not.a.jwt"))
        assert resp.status_code == 401


class TestLogout:

    @pytest.mark.asyncio
    async def test_token_revoked_after_logout(self, client: AsyncClient, admin_user):
        token = admin_user["token"]

        resp = await client.post("/api/v1/auth/logout", headers=auth_header(token))
        assert resp.status_code == 200

        resp = await client.get("/api/v1/devices", headers=auth_header(token))
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_new_login_after_logout(self, client: AsyncClient, admin_user):
        await client.post("/api/v1/auth/logout", headers=auth_header(admin_user["token"]))

        resp = await client.post(
            "/api/v1/auth/login",
            data={"username": admin_user["username"], "password": admin_user["password"]},
        )
        assert resp.status_code == 200
        fresh = resp.json()["access_token"]
        assert (await client.get("/api/v1/devices", headers=auth_header(fresh))).status_code == 200


class TestChangePassword:

    @pytest.mark.asyncio
    async def test_change_and_login_with_new(self, client: AsyncClient, admin_user):
        resp = await client.post(
            "/api/v1/auth/change-password",
            json={"current_password": admin_user["password"], "new_password": "brandnew123"},
            headers=auth_header(admin_user["token"]),
        )
        assert resp.status_code == 200

        old = await client.post(
            "/api/v1/auth/login",
            data={"username": admin_user["username"], "password": admin_user["password"]},
        )
        new = await client.post(
            "/api/v1/auth/login",
            data={"username": admin_user["username"], "password": "brandnew123"},
        )
        assert old.status_code == 401
        assert new.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, client: AsyncClient, admin_user):
        resp = await client.post(
            "/api/v1/auth/change-password",
            json={"current_password": "wrong", "new_password": "brandnew123"},
            headers=auth_header(admin_user["token"]),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_short_new_password(self, client: AsyncClient, admin_user):
        resp = await client.post(
            "/api/v1/auth/change-password",
            json={"current_password": admin_user["password"], "new_password": "short"},
            headers=auth_header(admin_user["token"]),
        )
        assert resp.status_code == 422
