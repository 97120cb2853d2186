"""
Async client for the university Portal API.

Three endpoints are used, all POST with a JSON body:

  /authenticate/authpsc             {username, password, type: 0}
                                    → {Token, Expire?, FullName?, IsLogin?, Message?}
  /professor/GetStudentInClassCVHT  {Id: class_id}
                                    → [{StudentID, StudentName, ...}, ...]
  /professor/StudentInfo            {p1: student_id}
                                    → {obj1: [detail], obj2: [contact]}

Every request carries the shared `apikey` and `clientid` headers; the two
data endpoints also need `Authorization: Bearer <token>`.

This layer does no retries. Transport errors, timeouts and non-2xx
responses become typed PortalErrors so the sync service can record them
per student.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from studentrecords.portal.auth import AuthGrant, PortalSession
from studentrecords.portal.errors import (
    EmptyResult,
    NotAuthenticated,
    NotFound,
    UpstreamAuthError,
    UpstreamUnavailable,
)

AUTH_PATH = "/authenticate/authpsc"
ROSTER_PATH = "/professor/GetStudentInClassCVHT"
STUDENT_INFO_PATH = "/professor/StudentInfo"

RosterEntry = Dict[str, Any]
RawUpstreamStudent = Dict[str, Any]


def _parse_expire(value: Any) -> Optional[datetime]:
    """Parse the Portal's `Expire` field into naive UTC, or None if absent/invalid."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class PortalGateway:
    """
    Thin async wrapper over the Portal HTTP API.

    The httpx.AsyncClient may be shared (passed in, owned by the caller) or
    created here, in which case `aclose()` releases it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client_id: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock=datetime.utcnow,
    ):
        """
        Args:
            base_url: Portal API root, e.g. "https://portal-api.dlu.edu.vn/api".
            api_key: Shared service API key sent as the `apikey` header.
            client_id: Client identifier sent as the `clientid` header.
            http_client: Optional shared httpx.AsyncClient.
            timeout: Per-request timeout in seconds.
            clock: Returns naive-UTC now; used to refuse expired sessions.
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client_id = client_id
        self._timeout = timeout
        self._clock = clock
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings, http_client: Optional[httpx.AsyncClient] = None) -> "PortalGateway":
        return cls(
            base_url=settings.portal_base_url,
            api_key=settings.portal_api_key,
            client_id=settings.portal_client_id,
            http_client=http_client,
            timeout=settings.portal_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ── Endpoints ─────────────────────────────────────────────────────────────

    async def authenticate(self, username: str, password: str) -> AuthGrant:
        """
        Exchange Portal credentials for a bearer token.

        Raises:
            UpstreamAuthError: on rejection, transport failure, or a reply
                without a token.
        """
        try:
            response = await self._post(
                AUTH_PATH,
                {"username": username or "", "password": password or "", "type": 0},
            )
        except httpx.HTTPError as exc:
            raise UpstreamAuthError(f"Portal authentication failed: {_describe(exc)}") from exc

        if response.is_error:
            raise UpstreamAuthError(
                f"Portal authentication failed: {response.status_code} {response.reason_phrase}"
            )

        data = _json(response, UpstreamAuthError)
        if not isinstance(data, dict):
            data = {}
        token = data.get("Token") or data.get("token")
        if not token:
            detail = data.get("Message")
            raise UpstreamAuthError(
                f"Portal did not return a token: {detail or 'unknown reason'}"
            )

        return AuthGrant(
            token=token,
            expires_at=_parse_expire(data.get("Expire")),
            display_name=data.get("FullName"),
        )

    async def fetch_class_roster(self, class_id: str, session: PortalSession) -> List[RosterEntry]:
        """
        List the students of a class, in the order the Portal returns them.

        Raises:
            UpstreamUnavailable: on transport failure or non-2xx.
            EmptyResult: if the roster contains no students.
        """
        data = await self._data_call(
            ROSTER_PATH, {"Id": class_id}, session, what="students in class"
        )
        if isinstance(data, dict):
            # Some Portal deployments wrap lists the same way as StudentInfo
            data = data.get("obj1") or data.get("data") or []
        entries = [e for e in (data or []) if isinstance(e, dict) and e.get("StudentID")]
        if not entries:
            raise EmptyResult(f"No students found in class {class_id}")
        return entries

    async def fetch_student_detail(self, student_id: str, session: PortalSession) -> RawUpstreamStudent:
        """
        Fetch one student's full record.

        The detail record (obj1[0]) is returned with the advisor/contact
        record (obj2[0], if any) attached under the "contact" key.

        Raises:
            UpstreamUnavailable: on transport failure or non-2xx.
            NotFound: if the Portal returns no detail record.
        """
        data = await self._data_call(
            STUDENT_INFO_PATH, {"p1": student_id}, session, what="student info"
        )
        if not isinstance(data, dict):
            raise UpstreamUnavailable("Failed to get student info: malformed response")
        details = data.get("obj1")
        if not details:
            raise NotFound("No student data returned from Portal")
        if not isinstance(details, list) or not isinstance(details[0], dict):
            raise UpstreamUnavailable("Failed to get student info: malformed student record")

        raw = dict(details[0])
        contacts = data.get("obj2")
        contact = contacts[0] if isinstance(contacts, list) and contacts else None
        # A broken contact block only costs the class metadata
        raw["contact"] = contact if isinstance(contact, dict) else None
        return raw

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _headers(self, session: Optional[PortalSession] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "apikey": self._api_key,
            "clientid": self._client_id,
        }
        if session is not None:
            headers["Authorization"] = f"Bearer {session.token}"
        return headers

    async def _post(self, path: str, body: Dict[str, Any], session: Optional[PortalSession] = None) -> httpx.Response:
        return await self._http.post(
            f"{self._base_url}{path}",
            json=body,
            headers=self._headers(session),
            timeout=self._timeout,
        )

    async def _data_call(self, path: str, body: Dict[str, Any], session: PortalSession, *, what: str) -> Any:
        if session.is_expired(self._clock()):
            raise NotAuthenticated("Portal session has expired. Log in to the Portal again.")
        try:
            response = await self._post(path, body, session)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Failed to get {what}: {_describe(exc)}") from exc
        if response.is_error:
            raise UpstreamUnavailable(
                f"Failed to get {what}: {response.status_code} {response.reason_phrase}"
            )
        return _json(response, UpstreamUnavailable)


def _json(response: httpx.Response, error_cls) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise error_cls(f"Portal returned invalid JSON ({response.status_code})") from exc


def _describe(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "request timed out"
    return str(exc) or exc.__class__.__name__
