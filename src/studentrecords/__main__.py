"""
Command-line entrypoint.

FastAPI runs separately under uvicorn.

Usage:
    python -m studentrecords setup                  # log in to the Portal, save token
    python -m studentrecords logout                 # forget the saved token
    python -m studentrecords sync-class CTK46A      # sync one class
    python -m studentrecords sync-student 2312663   # sync one student
    python -m studentrecords logs --type CLASS_SYNC # recent sync runs
    python -m studentrecords scheduler              # nightly re-sync of SYNC_CLASS_IDS
    uvicorn studentrecords.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_setup() -> None:
    from studentrecords.scripts.setup import run_setup
    run_setup()


def _run_logout() -> None:
    from studentrecords.config import get_settings
    from studentrecords.portal.auth import TokenStore

    TokenStore(get_settings().portal_session_dir).clear()
    logger.info("Portal session removed.")


async def _run_sync(kind: str, target_id: str) -> int:
    from studentrecords.config import get_settings
    from studentrecords.db.engine import get_engine
    from studentrecords.portal.auth import build_session_provider
    from studentrecords.portal.client import PortalGateway
    from studentrecords.portal.errors import NotAuthenticated
    from studentrecords.portal.sync_service import PortalSyncService
    from studentrecords.portal.throttle import FixedDelayThrottle

    settings = get_settings()
    gateway = PortalGateway.from_settings(settings)
    try:
        service = PortalSyncService(
            gateway=gateway,
            session_provider=build_session_provider(settings, gateway),
            engine=get_engine(),
            throttle=FixedDelayThrottle(settings.sync_throttle_seconds),
            email_domain=settings.school_email_domain,
        )
        try:
            if kind == "class":
                summary = await service.sync_class(target_id, triggered_by="cli")
            else:
                summary = await service.sync_student(target_id, triggered_by="cli")
        except NotAuthenticated as exc:
            logger.error("%s Run `python -m studentrecords setup` first.", exc)
            return 2
    finally:
        await gateway.aclose()

    logger.info(
        "%s: %d processed, %d failed (log #%s)",
        summary.status,
        summary.records_processed,
        summary.records_failed,
        summary.sync_log_id,
    )
    for line in summary.errors:
        logger.warning("  %s", line)
    if summary.auth_required:
        logger.error("Portal login required. Run `python -m studentrecords setup` first.")
        return 2
    return 0 if summary.success else 1


def _run_logs(page: int, limit: int, sync_type) -> None:
    from studentrecords.db.engine import get_engine
    from studentrecords.db.sync_logs import SyncLogStore

    result = SyncLogStore(get_engine()).list(page=page, limit=limit, sync_type=sync_type)
    for log in result["logs"]:
        target = log.target_class_id or log.target_student_id or "-"
        print(
            f"#{log.id:<5} {log.created_at:%Y-%m-%d %H:%M} {log.sync_type:<12} "
            f"{log.status:<8} {target:<12} ok={log.records_processed} failed={log.records_failed}"
        )
    p = result["pagination"]
    print(f"page {p['page']}/{max(p['totalPages'], 1)} ({p['total']} runs)")


async def _run_scheduler() -> None:
    from studentrecords.config import get_settings
    from studentrecords.db.engine import get_engine
    from studentrecords.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (nightly sync at %02d:00 UTC for %d classes)",
        settings.nightly_sync_hour,
        len(settings.sync_class_ids),
    )
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m studentrecords")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup", help="log in to the Portal and save the token")
    sub.add_parser("logout", help="forget the saved Portal token")

    p = sub.add_parser("sync-class", help="sync every student of a class")
    p.add_argument("class_id")
    p = sub.add_parser("sync-student", help="sync one student")
    p.add_argument("student_id")

    p = sub.add_parser("logs", help="list recent sync runs")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--type", dest="sync_type", choices=["CLASS_SYNC", "STUDENT_SYNC"])

    sub.add_parser("scheduler", help="run the nightly class re-sync")
    return parser


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "setup":
        _run_setup()
    elif args.command == "logout":
        _run_logout()
    elif args.command == "sync-class":
        return asyncio.run(_run_sync("class", args.class_id))
    elif args.command == "sync-student":
        return asyncio.run(_run_sync("student", args.student_id))
    elif args.command == "logs":
        _run_logs(args.page, args.limit, args.sync_type)
    elif args.command == "scheduler":
        asyncio.run(_run_scheduler())
    return 0


if __name__ == "__main__":
    sys.exit(main())
