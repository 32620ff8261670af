# tests/test_admin_api.py: Admin console HTTP surface
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from securechat.core.security import create_access_token
from securechat.main import create_app
from securechat.services.audit import AuditEvent
from tests.conftest import ADMIN_PASSWORD, PASSWORD, register


@pytest_asyncio.fixture
async def client(core):
    app = create_app(core=core)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def admin_headers(client):
    res = await client.post("/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.mark.asyncio
class TestAuth:
    async def test_health(self, client):
        res = await client.get("/health")
        assert res.json() == {"status": "ok"}

    async def test_admin_login_issues_token(self, client):
        res = await client.post("/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
        assert res.status_code == 200
        assert res.json()["token_type"] == "bearer"

    async def test_wrong_admin_password(self, client):
        res = await client.post("/auth/login", json={"username": "admin", "password": "nope"})
        assert res.status_code == 401

    async def test_repeated_admin_failures_are_throttled(self, client, core):
        for _ in range(core.identities.limiter.max_attempts):
            res = await client.post("/auth/login", json={"username": "admin", "password": "nope"})
            assert res.status_code == 401
        res = await client.post("/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
        assert res.status_code == 429

    async def test_regular_user_cannot_use_console(self, client, core):
        await register(core, "alice")
        res = await client.post("/auth/login", json={"username": "alice", "password": PASSWORD})
        assert res.status_code == 401

    async def test_extra_fields_rejected(self, client):
        res = await client.post("/auth/login", json={"username": "admin", "password": "x", "otp": "1"})
        assert res.status_code == 422


@pytest.mark.asyncio
class TestAdminEndpoints:
    async def test_requires_token(self, client):
        res = await client.get("/admin/logs")
        assert res.status_code in (401, 403)

    async def test_rejects_non_admin_token(self, client, core):
        token = create_access_token(core.settings, subject="alice", extra={"role": "USER"})
        res = await client.get("/admin/logs", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 403

    async def test_rejects_garbage_token(self, client):
        res = await client.get("/admin/logs", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    async def test_logs_newest_first(self, client, core):
        await register(core, "alice")
        await register(core, "bob")
        headers = await admin_headers(client)
        res = await client.get("/admin/logs", headers=headers, params={"limit": 2})
        assert res.status_code == 200
        body = res.json()
        assert len(body) == 2
        assert body[0]["event"] == AuditEvent.LOGIN_SUCCESS
        assert body[0]["level"] == "alert"
        assert body[1]["details"] == "New user registered: bob"

    async def test_clear_logs_is_unsupported(self, client, core):
        headers = await admin_headers(client)
        res = await client.delete("/admin/logs", headers=headers)
        assert res.status_code == 501
        assert res.json()["code"] == "UNSUPPORTED"
        assert len(await core.audit.recent()) >= 1

    async def test_users_listing_hides_verifier(self, client, core):
        user = await register(core, "alice")
        await core.identities.record_login(user)
        headers = await admin_headers(client)
        res = await client.get("/admin/users", headers=headers)
        assert res.status_code == 200
        [row] = res.json()
        assert row["username"] == "alice"
        assert row["last_login"] is not None
        assert len(row["login_history"]) == 1
        assert "password_hash" not in row
