"""
APScheduler jobs for background sync.

A nightly run re-syncs every class listed in SYNC_CLASS_IDS so Portal-side
changes (status, contact details, new students) reach the local DB even
when nobody presses the sync button. Needs a Portal session: either
service credentials, or a staff token saved by `python -m studentrecords setup`
that is still inside its window.
"""
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from studentrecords.config import get_settings

logger = logging.getLogger(__name__)

SCHEDULER_TRIGGERED_BY = "scheduler"


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the sync service.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _nightly_sync,
        trigger="cron",
        hour=settings.nightly_sync_hour,
        minute=0,
        id="nightly_sync",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _nightly_sync(engine) -> None:
    """
    Nightly job: sync every configured class, one after another.

    A class that fails is logged and the next one still runs.
    """
    from studentrecords.portal.auth import build_session_provider
    from studentrecords.portal.client import PortalGateway
    from studentrecords.portal.sync_service import PortalSyncService
    from studentrecords.portal.throttle import FixedDelayThrottle

    settings = get_settings()
    if not settings.sync_class_ids:
        logger.info("Nightly sync skipped: no classes configured")
        return

    logger.info("Nightly sync starting at %s", datetime.utcnow().isoformat())

    gateway = PortalGateway.from_settings(settings)
    try:
        service = PortalSyncService(
            gateway=gateway,
            session_provider=build_session_provider(settings, gateway),
            engine=engine,
            throttle=FixedDelayThrottle(settings.sync_throttle_seconds),
            email_domain=settings.school_email_domain,
        )
        for class_id in settings.sync_class_ids:
            try:
                summary = await service.sync_class(class_id, triggered_by=SCHEDULER_TRIGGERED_BY)
            except Exception as exc:
                logger.error("Nightly sync of %s failed: %s", class_id, exc)
                continue
            logger.info(
                "Synced class %s: %s (%d processed, %d failed)",
                class_id,
                summary.status,
                summary.records_processed,
                summary.records_failed,
            )
    finally:
        await gateway.aclose()
