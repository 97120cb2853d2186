"""FastAPI dependencies shared by the route modules."""
from fastapi import Request

from studentrecords.config import get_settings
from studentrecords.db.engine import get_engine
from studentrecords.db.sync_logs import SyncLogStore
from studentrecords.portal.auth import SessionProvider
from studentrecords.portal.sync_service import PortalSyncService
from studentrecords.portal.throttle import FixedDelayThrottle


def get_session_provider(request: Request) -> SessionProvider:
    """The app-wide Portal session provider created in the lifespan."""
    return request.app.state.session_provider


def get_log_store() -> SyncLogStore:
    return SyncLogStore(get_engine())


def get_sync_service(request: Request) -> PortalSyncService:
    settings = get_settings()
    return PortalSyncService(
        gateway=request.app.state.gateway,
        session_provider=request.app.state.session_provider,
        engine=get_engine(),
        throttle=FixedDelayThrottle(settings.sync_throttle_seconds),
        email_domain=settings.school_email_domain,
    )
