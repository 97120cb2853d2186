"""
Portal session management.

The Portal issues a bearer token from POST /authenticate/authpsc. Tokens
carry an optional `Expire` timestamp; when it is missing the token is
assumed to live for two hours. We only hand a session out for the first
75% of its lifetime (90 minutes for the default) so a long class sync
never runs into an expiry halfway through.

Two providers implement the same interface:

  ServiceCredentialSessionProvider
      Logs in with the service username/password from settings and logs
      in again whenever the cached session leaves its window.

  InteractiveSessionProvider
      The token comes from a staff member logging in (web form or
      `python -m studentrecords setup`). It is written to disk with
      owner-only permissions so it survives restarts. Nobody can type the
      password for us later, so an expired session raises
      NotAuthenticated instead of refreshing.

Refresh is single-flight: concurrent callers that find the cache stale
queue on one asyncio.Lock and reuse whatever the first one obtained.
"""
import asyncio
import json
import logging
import os
import stat
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from studentrecords.portal.errors import NotAuthenticated

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

DEFAULT_TOKEN_LIFETIME = timedelta(hours=2)
CACHE_FRACTION = 0.75
SESSION_FILE_NAME = "session.json"

AUTH_MODE_INTERACTIVE = "interactive"
AUTH_MODE_SERVICE = "service"


# ── Value types ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PortalCredentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"PortalCredentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class AuthGrant:
    """What the Portal returned from a successful login."""

    token: str
    expires_at: Optional[datetime] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class PortalSession:
    """An authenticated bearer token and its validity window (naive UTC)."""

    token: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_grant(cls, grant: AuthGrant, issued_at: datetime) -> "PortalSession":
        expires_at = grant.expires_at or issued_at + DEFAULT_TOKEN_LIFETIME
        return cls(token=grant.token, issued_at=issued_at, expires_at=expires_at)

    @property
    def cache_until(self) -> datetime:
        """End of the safety window, strictly before expires_at."""
        return self.issued_at + (self.expires_at - self.issued_at) * CACHE_FRACTION

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return now < self.cache_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortalSession":
        return cls(
            token=data["token"],
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

    def __repr__(self) -> str:
        return (
            f"PortalSession(token='***', issued_at={self.issued_at!r}, "
            f"expires_at={self.expires_at!r})"
        )


# ── Persistence ───────────────────────────────────────────────────────────────

class TokenStore:
    """Stores one PortalSession as JSON on disk, readable by the owner only."""

    def __init__(self, session_dir: Path):
        self._session_dir = Path(session_dir)
        self._session_file = self._session_dir / SESSION_FILE_NAME

    @property
    def path(self) -> Path:
        return self._session_file

    def has_session(self) -> bool:
        """Return True if a session file exists on disk."""
        return self._session_file.exists()

    def save(self, session: PortalSession) -> None:
        """
        Persist the session with owner-only permissions.

        Directory: 0700 (rwx------)
        File:      0600 (rw-------)
        """
        self._session_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self._session_dir, stat.S_IRWXU)  # 0700

        self._session_file.write_text(json.dumps(session.to_dict(), indent=2))
        os.chmod(self._session_file, stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def load(self) -> Optional[PortalSession]:
        """Load the saved session, or None if there is none or it is unreadable."""
        if not self._session_file.exists():
            return None
        try:
            return PortalSession.from_dict(json.loads(self._session_file.read_text()))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable Portal session file %s: %s", self._session_file, exc)
            return None

    def clear(self) -> None:
        """Delete the session file (does not raise if already absent)."""
        if self._session_file.exists():
            self._session_file.unlink()


# ── Providers ─────────────────────────────────────────────────────────────────

class SessionProvider:
    """
    Base class for Portal session providers.

    Subclasses implement `authenticate()` and `_refresh()`; the cached
    session, the safety window and the refresh lock live here.
    """

    def __init__(self, gateway, clock: Callable[[], datetime] = datetime.utcnow):
        """
        Args:
            gateway: PortalGateway (or a mock) exposing `authenticate()`.
            clock: Returns the current naive-UTC time. Injected for tests.
        """
        self._gateway = gateway
        self._clock = clock
        self._session: Optional[PortalSession] = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Optional[PortalSession]:
        return self._session

    def has_session(self) -> bool:
        """Return True if a session is cached and still inside its window."""
        return self._session is not None and self._session.is_usable(self._clock())

    def can_provide(self) -> bool:
        """Return True if `current_or_refresh()` can succeed without a staff login."""
        return self.has_session()

    async def authenticate(self, credentials: Optional[PortalCredentials] = None) -> PortalSession:
        raise NotImplementedError

    async def current_or_refresh(self) -> PortalSession:
        """
        Return the cached session if it is inside its window, else obtain a new one.

        Raises:
            NotAuthenticated: if no session can be obtained.
        """
        session = self._session
        if session is not None and session.is_usable(self._clock()):
            return session

        async with self._lock:
            # Another caller may have refreshed while we waited
            session = self._session
            if session is not None and session.is_usable(self._clock()):
                return session
            self._session = None
            session = await self._refresh()
            self._session = session
            return session

    def invalidate(self) -> None:
        """Drop the cached session immediately."""
        self._session = None

    async def _login(self, credentials: PortalCredentials) -> PortalSession:
        grant = await self._gateway.authenticate(credentials.username, credentials.password)
        session = PortalSession.from_grant(grant, issued_at=self._clock())
        logger.info("Portal session issued, expires at %s", session.expires_at.isoformat())
        return session

    async def _refresh(self) -> PortalSession:
        raise NotImplementedError


class ServiceCredentialSessionProvider(SessionProvider):
    """Session backed by service credentials from settings."""

    def __init__(
        self,
        gateway,
        credentials: Optional[PortalCredentials] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        super().__init__(gateway, clock=clock)
        self._credentials = credentials

    async def authenticate(self, credentials: Optional[PortalCredentials] = None) -> PortalSession:
        """
        Log in with the given credentials (or the configured ones) and cache the session.

        Raises:
            NotAuthenticated: if no credentials are available.
            UpstreamAuthError: if the Portal rejects them or is unreachable.
        """
        async with self._lock:
            session = await self._login(self._require(credentials))
            self._session = session
            return session

    def can_provide(self) -> bool:
        return self.has_session() or bool(self._credentials and self._credentials.username)

    async def _refresh(self) -> PortalSession:
        return await self._login(self._require(None))

    def _require(self, credentials: Optional[PortalCredentials]) -> PortalCredentials:
        creds = credentials or self._credentials
        if creds is None or not creds.username:
            raise NotAuthenticated(
                "No Portal service credentials configured. "
                "Set PORTAL_USERNAME and PORTAL_PASSWORD."
            )
        return creds


class InteractiveSessionProvider(SessionProvider):
    """Session backed by a token obtained from an interactive staff login."""

    def __init__(
        self,
        gateway,
        store: TokenStore,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        super().__init__(gateway, clock=clock)
        self._store = store
        self._session = store.load()

    def has_session(self) -> bool:
        if not super().has_session():
            self._session = self._store.load()
        return super().has_session()

    async def authenticate(self, credentials: Optional[PortalCredentials] = None) -> PortalSession:
        """
        Log in with a staff member's Portal account and persist the token.

        Raises:
            NotAuthenticated: if credentials are missing.
            UpstreamAuthError: if the Portal rejects them or is unreachable.
        """
        if credentials is None or not credentials.username or not credentials.password:
            raise NotAuthenticated("Portal username and password are required.")
        async with self._lock:
            session = await self._login(credentials)
            self._store.save(session)
            self._session = session
            return session

    def invalidate(self) -> None:
        super().invalidate()
        self._store.clear()

    async def _refresh(self) -> PortalSession:
        # The CLI wizard may have written a newer token since we last looked
        session = self._store.load()
        if session is None:
            raise NotAuthenticated(
                "Not logged in to the Portal. "
                "Log in from the sync page or run `python -m studentrecords setup`."
            )
        if not session.is_usable(self._clock()):
            raise NotAuthenticated("Portal session has expired. Log in to the Portal again.")
        return session


def build_session_provider(settings, gateway) -> SessionProvider:
    """Pick the provider matching `settings.portal_auth_mode`."""
    if settings.portal_auth_mode == AUTH_MODE_SERVICE:
        credentials = None
        if settings.portal_username:
            credentials = PortalCredentials(settings.portal_username, settings.portal_password)
        return ServiceCredentialSessionProvider(gateway, credentials=credentials)
    if settings.portal_auth_mode == AUTH_MODE_INTERACTIVE:
        return InteractiveSessionProvider(gateway, TokenStore(settings.portal_session_dir))
    raise ValueError(f"Unknown portal_auth_mode: {settings.portal_auth_mode!r}")
