"""Integration tests for /portal-auth routes."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClock
from studentrecords.api.deps import get_session_provider
from studentrecords.api.main import create_app
from studentrecords.portal.auth import AuthGrant, InteractiveSessionProvider, TokenStore
from studentrecords.portal.errors import UpstreamAuthError


@pytest.fixture(name="gateway")
def gateway_fixture():
    gateway = MagicMock()
    gateway.authenticate = AsyncMock(return_value=AuthGrant(token="tok-1", display_name="Trần Văn Cố Vấn"))
    return gateway


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock(start=datetime(2025, 9, 1, 8, 0), step=timedelta(0))


@pytest.fixture(name="store")
def store_fixture(tmp_path):
    return TokenStore(tmp_path / "portal_session")


@pytest.fixture(name="provider")
def provider_fixture(gateway, store, clock):
    return InteractiveSessionProvider(gateway, store, clock=clock)


@pytest.fixture(name="client")
def client_fixture(engine, provider):
    with patch("studentrecords.db.engine._engine", engine):
        app = create_app()
        app.dependency_overrides[get_session_provider] = lambda: provider
        with TestClient(app) as c:
            yield c


class TestPortalLogin:
    def test_login_success(self, client, gateway, store):
        resp = client.post("/portal-auth", json={"username": "cvht01", "password": "s3cret"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "expiresAt": "2025-09-01T10:00:00"}
        gateway.authenticate.assert_awaited_once_with("cvht01", "s3cret")
        assert store.load().token == "tok-1"

    def test_username_trimmed(self, client, gateway):
        client.post("/portal-auth", json={"username": " cvht01 ", "password": "s3cret"})
        gateway.authenticate.assert_awaited_once_with("cvht01", "s3cret")

    @pytest.mark.parametrize("body", [
        {"username": "", "password": "s3cret"},
        {"username": "cvht01", "password": ""},
        {},
    ])
    def test_missing_credentials_is_400(self, client, gateway, body):
        resp = client.post("/portal-auth", json=body)
        assert resp.status_code == 400
        gateway.authenticate.assert_not_awaited()

    def test_rejected_login_is_401(self, client, gateway, store):
        gateway.authenticate = AsyncMock(side_effect=UpstreamAuthError("Portal login rejected: Sai mật khẩu"))
        resp = client.post("/portal-auth", json={"username": "cvht01", "password": "wrong"})
        assert resp.status_code == 401
        assert "Sai mật khẩu" in resp.json()["detail"]
        assert not store.has_session()


class TestPortalStatus:
    def test_not_logged_in(self, client):
        assert client.get("/portal-auth").json() == {"authenticated": False}

    def test_logged_in(self, client):
        client.post("/portal-auth", json={"username": "cvht01", "password": "s3cret"})
        assert client.get("/portal-auth").json() == {
            "authenticated": True,
            "expired": False,
            "expiresAt": "2025-09-01T10:00:00",
        }

    def test_expired(self, client, clock):
        client.post("/portal-auth", json={"username": "cvht01", "password": "s3cret"})
        clock.advance(timedelta(hours=3))
        body = client.get("/portal-auth").json()
        assert body["authenticated"] is False
        assert body["expired"] is True


class TestPortalLogout:
    def test_logout_clears_session(self, client, store):
        client.post("/portal-auth", json={"username": "cvht01", "password": "s3cret"})
        resp = client.delete("/portal-auth")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert not store.has_session()
        assert client.get("/portal-auth").json() == {"authenticated": False}

    def test_logout_when_not_logged_in(self, client):
        assert client.delete("/portal-auth").json() == {"success": True}
