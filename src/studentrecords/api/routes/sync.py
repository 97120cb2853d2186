"""Sync trigger and history routes."""
import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from studentrecords.api.deps import get_log_store, get_session_provider, get_sync_service
from studentrecords.config import get_settings
from studentrecords.db.sync_logs import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, SyncLogStore
from studentrecords.portal.auth import SessionProvider
from studentrecords.portal.errors import NotAuthenticated
from studentrecords.portal.sync_service import PortalSyncService, SyncRunSummary

logger = logging.getLogger(__name__)

router = APIRouter()

PORTAL_LOGIN_REQUIRED = "Portal login required. Log in to the Portal before syncing."


class SyncTriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["class", "student"]
    target_id: str = Field(min_length=1, alias="targetId")


class SyncStatusResponse(BaseModel):
    status: str
    sync_type: Optional[str]
    created_at: Optional[datetime]
    records_processed: Optional[int]
    records_failed: Optional[int]
    message: Optional[str]


def _login_required(reason: str, summary: Optional[SyncRunSummary] = None) -> HTTPException:
    detail = {"error": PORTAL_LOGIN_REQUIRED, "message": reason}
    if summary is not None:
        detail["summary"] = summary.to_dict()
    return HTTPException(status_code=401, detail=detail)


@router.post("")
async def trigger_sync(
    request: SyncTriggerRequest,
    service: PortalSyncService = Depends(get_sync_service),
    provider: SessionProvider = Depends(get_session_provider),
):
    """
    Run a class or student sync and return its summary.

    Responds 401 when there is no Portal session, so the UI can send the
    user to the Portal login form instead of showing a sync failure.
    """
    if not provider.can_provide():
        raise _login_required("No active Portal session.")

    target_id = request.target_id.strip()
    triggered_by = get_settings().triggered_by_default
    logger.info("Sync requested: %s %s", request.type, target_id)
    try:
        if request.type == "class":
            summary = await service.sync_class(target_id, triggered_by=triggered_by)
        else:
            summary = await service.sync_student(target_id, triggered_by=triggered_by)
    except NotAuthenticated as exc:
        raise _login_required(str(exc))

    if summary.auth_required:
        # The run is already logged as FAILED/PARTIAL; the caller still needs to log in again
        raise _login_required(summary.auth_error, summary)

    return summary.to_dict()


@router.get("/logs")
def list_sync_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sync_type: Optional[str] = Query(None, alias="syncType"),
    store: SyncLogStore = Depends(get_log_store),
):
    """List sync runs, newest first."""
    return store.list(page=page, limit=limit, sync_type=sync_type)


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(store: SyncLogStore = Depends(get_log_store)):
    """Return the outcome of the most recent sync run."""
    log = store.latest()
    if not log:
        return SyncStatusResponse(
            status="never_run",
            sync_type=None,
            created_at=None,
            records_processed=None,
            records_failed=None,
            message=None,
        )
    return SyncStatusResponse(
        status=log.status,
        sync_type=log.sync_type,
        created_at=log.created_at,
        records_processed=log.records_processed,
        records_failed=log.records_failed,
        message=log.message,
    )
