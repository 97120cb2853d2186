"""Tests for the PortalGateway HTTP wrapper.

Requests go through httpx.MockTransport, so every test can look at the
exact URL, headers and body the Portal would have received.
"""
import json
from datetime import datetime, timedelta

import httpx
import pytest

from conftest import make_portal_detail
from studentrecords.portal.auth import AuthGrant, PortalSession
from studentrecords.portal.client import PortalGateway, _parse_expire
from studentrecords.portal.errors import (
    EmptyResult,
    NotAuthenticated,
    NotFound,
    UpstreamAuthError,
    UpstreamUnavailable,
)

BASE_URL = "https://portal.test/api"


def make_gateway(handler, **kwargs) -> PortalGateway:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PortalGateway(BASE_URL, api_key="key-123", client_id="vhu", http_client=http_client, **kwargs)


def fresh_session(token: str = "tok-abc") -> PortalSession:
    return PortalSession.from_grant(AuthGrant(token=token), issued_at=datetime.utcnow())


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, payload=None, exc=None):
        self.requests = []
        self.status_code = status_code
        self.payload = payload
        self.exc = exc

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, json=self.payload)

    @property
    def last_body(self):
        return json.loads(self.requests[-1].content)


# ─── authenticate ─────────────────────────────────────────────────────────────

class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_posts_credentials_with_service_headers(self):
        rec = Recorder(payload={"Token": "tok-1", "FullName": "Trần Văn Cố Vấn"})
        gateway = make_gateway(rec)

        grant = await gateway.authenticate("cvht01", "pw")

        request = rec.requests[0]
        assert str(request.url) == f"{BASE_URL}/authenticate/authpsc"
        assert request.headers["apikey"] == "key-123"
        assert request.headers["clientid"] == "vhu"
        assert "authorization" not in request.headers
        assert rec.last_body == {"username": "cvht01", "password": "pw", "type": 0}
        assert grant.token == "tok-1"
        assert grant.display_name == "Trần Văn Cố Vấn"

    @pytest.mark.asyncio
    async def test_lowercase_token_key(self):
        gateway = make_gateway(Recorder(payload={"token": "tok-1"}))
        assert (await gateway.authenticate("u", "p")).token == "tok-1"

    @pytest.mark.asyncio
    async def test_declared_expiry_parsed(self):
        gateway = make_gateway(Recorder(payload={"Token": "t", "Expire": "2025-09-01T10:00:00Z"}))
        grant = await gateway.authenticate("u", "p")
        assert grant.expires_at == datetime(2025, 9, 1, 10, 0)

    @pytest.mark.asyncio
    async def test_missing_expiry_is_none(self):
        grant = await make_gateway(Recorder(payload={"Token": "t"})).authenticate("u", "p")
        assert grant.expires_at is None

    @pytest.mark.asyncio
    async def test_non_2xx_raises_auth_error(self):
        gateway = make_gateway(Recorder(status_code=401, payload={"Message": "nope"}))
        with pytest.raises(UpstreamAuthError, match="401"):
            await gateway.authenticate("u", "p")

    @pytest.mark.asyncio
    async def test_missing_token_raises_with_portal_message(self):
        gateway = make_gateway(Recorder(payload={"IsLogin": False, "Message": "Sai mật khẩu"}))
        with pytest.raises(UpstreamAuthError, match="Sai mật khẩu"):
            await gateway.authenticate("u", "p")

    @pytest.mark.asyncio
    async def test_network_error_raises_auth_error(self):
        gateway = make_gateway(Recorder(exc=httpx.ConnectError("connection refused")))
        with pytest.raises(UpstreamAuthError):
            await gateway.authenticate("u", "p")

    @pytest.mark.asyncio
    async def test_auth_error_is_not_authenticated(self):
        gateway = make_gateway(Recorder(status_code=500))
        with pytest.raises(NotAuthenticated):
            await gateway.authenticate("u", "p")


# ─── fetch_class_roster ───────────────────────────────────────────────────────

class TestFetchClassRoster:
    @pytest.mark.asyncio
    async def test_sends_bearer_and_class_id(self):
        rec = Recorder(payload=[{"StudentID": "2312663", "StudentName": "An"}])
        gateway = make_gateway(rec)

        await gateway.fetch_class_roster("CTK46A", fresh_session("tok-abc"))

        request = rec.requests[0]
        assert str(request.url) == f"{BASE_URL}/professor/GetStudentInClassCVHT"
        assert request.headers["authorization"] == "Bearer tok-abc"
        assert request.headers["apikey"] == "key-123"
        assert request.headers["clientid"] == "vhu"
        assert rec.last_body == {"Id": "CTK46A"}

    @pytest.mark.asyncio
    async def test_keeps_upstream_order(self):
        ids = ["2312670", "2312663", "2312665"]
        gateway = make_gateway(Recorder(payload=[{"StudentID": i} for i in ids]))
        roster = await gateway.fetch_class_roster("CTK46A", fresh_session())
        assert [e["StudentID"] for e in roster] == ids

    @pytest.mark.asyncio
    async def test_empty_roster_raises(self):
        gateway = make_gateway(Recorder(payload=[]))
        with pytest.raises(EmptyResult, match="CTK46A"):
            await gateway.fetch_class_roster("CTK46A", fresh_session())

    @pytest.mark.asyncio
    async def test_entries_without_id_dropped(self):
        gateway = make_gateway(Recorder(payload=[{"StudentID": ""}, {"StudentID": "2312663"}]))
        roster = await gateway.fetch_class_roster("CTK46A", fresh_session())
        assert [e["StudentID"] for e in roster] == ["2312663"]

    @pytest.mark.asyncio
    async def test_non_2xx_raises_unavailable(self):
        gateway = make_gateway(Recorder(status_code=503))
        with pytest.raises(UpstreamUnavailable, match="503"):
            await gateway.fetch_class_roster("CTK46A", fresh_session())

    @pytest.mark.asyncio
    async def test_timeout_raises_unavailable(self):
        gateway = make_gateway(Recorder(exc=httpx.ReadTimeout("slow")))
        with pytest.raises(UpstreamUnavailable, match="timed out"):
            await gateway.fetch_class_roster("CTK46A", fresh_session())

    @pytest.mark.asyncio
    async def test_expired_session_refused_without_request(self):
        rec = Recorder(payload=[{"StudentID": "1"}])
        gateway = make_gateway(rec)
        stale = PortalSession.from_grant(AuthGrant(token="t"), issued_at=datetime.utcnow() - timedelta(hours=3))
        with pytest.raises(NotAuthenticated):
            await gateway.fetch_class_roster("CTK46A", stale)
        assert rec.requests == []


# ─── fetch_student_detail ─────────────────────────────────────────────────────

class TestFetchStudentDetail:
    @pytest.mark.asyncio
    async def test_returns_detail_with_contact(self):
        detail = make_portal_detail("2312663")
        contact = detail.pop("contact")
        rec = Recorder(payload={"obj1": [detail], "obj2": [contact]})
        gateway = make_gateway(rec)

        raw = await gateway.fetch_student_detail("2312663", fresh_session())

        assert str(rec.requests[0].url) == f"{BASE_URL}/professor/StudentInfo"
        assert rec.last_body == {"p1": "2312663"}
        assert raw["StudentID"] == "2312663"
        assert raw["contact"]["ProfessorName"] == "Trần Văn Cố Vấn"

    @pytest.mark.asyncio
    async def test_missing_contact_is_none(self):
        detail = make_portal_detail("2312663")
        detail.pop("contact")
        gateway = make_gateway(Recorder(payload={"obj1": [detail], "obj2": []}))
        raw = await gateway.fetch_student_detail("2312663", fresh_session())
        assert raw["contact"] is None

    @pytest.mark.asyncio
    async def test_empty_result_raises_not_found(self):
        gateway = make_gateway(Recorder(payload={"obj1": [], "obj2": []}))
        with pytest.raises(NotFound):
            await gateway.fetch_student_detail("9999999", fresh_session())

    @pytest.mark.asyncio
    async def test_not_found_is_unavailable(self):
        gateway = make_gateway(Recorder(payload={"obj1": []}))
        with pytest.raises(UpstreamUnavailable):
            await gateway.fetch_student_detail("9999999", fresh_session())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"obj1": [None]},
        {"obj1": ["2312663"]},
        {"obj1": {"StudentID": "2312663"}},
        [{"StudentID": "2312663"}],
        "maintenance",
    ])
    async def test_malformed_detail_raises_unavailable(self, payload):
        gateway = make_gateway(Recorder(payload=payload))
        with pytest.raises(UpstreamUnavailable, match="malformed"):
            await gateway.fetch_student_detail("2312663", fresh_session())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("obj2", [[None], ["GV001"], {"ProfessorID": "GV001"}, "x"])
    async def test_malformed_contact_dropped(self, obj2):
        detail = make_portal_detail("2312663")
        detail.pop("contact")
        gateway = make_gateway(Recorder(payload={"obj1": [detail], "obj2": obj2}))
        raw = await gateway.fetch_student_detail("2312663", fresh_session())
        assert raw["StudentID"] == "2312663"
        assert raw["contact"] is None

    @pytest.mark.asyncio
    async def test_invalid_json_raises_unavailable(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        gateway = make_gateway(handler)
        with pytest.raises(UpstreamUnavailable, match="invalid JSON"):
            await gateway.fetch_student_detail("2312663", fresh_session())


class TestParseExpire:
    def test_offset_converted_to_utc(self):
        assert _parse_expire("2025-09-01T17:00:00+07:00") == datetime(2025, 9, 1, 10, 0)

    def test_naive_kept(self):
        assert _parse_expire("2025-09-01T10:00:00") == datetime(2025, 9, 1, 10, 0)

    def test_garbage(self):
        assert _parse_expire("tomorrow") is None
        assert _parse_expire(None) is None
