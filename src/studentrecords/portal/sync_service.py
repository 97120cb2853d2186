"""
PortalSyncService — pulls student data from the Portal into the local DB.

Flow for a class sync:
  1. Obtain a Portal session (cached, refreshed single-flight)
  2. Fetch the class roster → EmptyResult is fatal for the run
  3. Ensure the ClassRoom row exists
  4. For each roster entry, in Portal order:
       fetch detail → normalize → upsert Student
     A failure on one student is recorded as "{student_id}: {message}"
     and the loop moves on. The throttle runs between entries.
  5. Write exactly one SyncLog row (SUCCESS / PARTIAL / FAILED)

A student sync is the same steps 1 and 4 for a single id, also logged.

Merge policy: Portal-owned columns (PORTAL_FIELDS) are overwritten on
every sync; staff-owned columns (STAFF_FIELDS) are never written. Each
student is committed on its own, so a run interrupted halfway keeps the
students it already saved and a re-run only has the failures left to fix.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from studentrecords.db.sync_logs import SyncLogStore
from studentrecords.models.student import PORTAL_FIELDS, ClassRoom, Student
from studentrecords.models.sync import (
    CLASS_SYNC,
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    STUDENT_SYNC,
)
from studentrecords.portal.errors import (
    LocalStoreError,
    NotAuthenticated,
    PortalError,
)
from studentrecords.portal.normalizer import (
    DEFAULT_EMAIL_DOMAIN,
    normalize_class_metadata,
    normalize_student,
)
from studentrecords.portal.throttle import NoThrottle, Throttle

logger = logging.getLogger(__name__)

# Failures that cost one record, never the whole run. ValueError and
# TypeError cover a detail record the normalizer cannot make sense of.
RECORD_ERRORS = (PortalError, LocalStoreError, ValueError, TypeError)


@dataclass
class SyncRunSummary:
    """Outcome of one sync run."""

    records_processed: int = 0
    records_failed: int = 0
    errors: List[str] = field(default_factory=list)
    aborted: bool = False
    auth_error: Optional[str] = None
    sync_log_id: Optional[int] = None

    @property
    def status(self) -> str:
        if self.records_failed == 0 and not self.aborted:
            return STATUS_SUCCESS
        if self.records_processed > 0:
            return STATUS_PARTIAL
        return STATUS_FAILED

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    @property
    def auth_required(self) -> bool:
        """True when the run stopped because the Portal session was missing or rejected."""
        return self.auth_error is not None

    def record_failure(self, target_id: str, exc: Exception) -> None:
        self.records_failed += 1
        self.errors.append(f"{target_id}: {exc}")

    def abort(self, message: str) -> None:
        """Record a run-level error that stopped the run."""
        self.aborted = True
        self.errors.append(message)

    def abort_unauthenticated(self, message: str) -> None:
        self.auth_error = message
        self.abort(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "recordsProcessed": self.records_processed,
            "recordsFailed": self.records_failed,
            "errors": list(self.errors),
            "syncLogId": self.sync_log_id,
        }


class PortalSyncService:
    """Orchestrates Portal → DB sync for one student or one class."""

    def __init__(
        self,
        gateway,
        session_provider,
        engine,
        *,
        throttle: Optional[Throttle] = None,
        log_store: Optional[SyncLogStore] = None,
        email_domain: str = DEFAULT_EMAIL_DOMAIN,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Args:
            gateway: PortalGateway instance (or AsyncMock in tests).
            session_provider: SessionProvider handing out Portal sessions.
            engine: SQLAlchemy engine (SQLModel create_engine result).
            throttle: Awaited between roster entries. Defaults to no delay.
            log_store: Where run summaries are written. Defaults to one on `engine`.
            email_domain: Domain of the derived school email.
            clock: Returns naive-UTC now; stamps last_synced_at.
        """
        self.gateway = gateway
        self.session_provider = session_provider
        self.engine = engine
        self.throttle = throttle or NoThrottle()
        self.log_store = log_store or SyncLogStore(engine)
        self.email_domain = email_domain
        self.clock = clock

    async def sync_student(
        self, student_id: str, triggered_by: Optional[str] = None
    ) -> SyncRunSummary:
        """
        Fetch and persist one student.

        Upstream and local-store failures are reported in the summary, not
        raised.

        Raises:
            NotAuthenticated: if no Portal session can be obtained.
        """
        summary = SyncRunSummary()
        session = await self.session_provider.current_or_refresh()

        logger.info("Student sync starting for %s", student_id)
        try:
            await self._sync_one(student_id, session)
            summary.records_processed = 1
        except NotAuthenticated:
            raise
        except RECORD_ERRORS as exc:
            logger.warning("Student sync failed for %s: %s", student_id, exc)
            summary.record_failure(student_id, exc)

        self._write_log(
            summary,
            sync_type=STUDENT_SYNC,
            target_student_id=student_id,
            triggered_by=triggered_by,
        )
        return summary

    async def sync_class(
        self,
        class_id: str,
        triggered_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncRunSummary:
        """
        Fetch and persist every student of a class.

        Never raises for upstream problems: authentication failures and an
        empty roster end the run early with a FAILED summary, per-student
        failures are counted and the loop continues. One SyncLog row is
        written in every case. A missing or rejected Portal session also
        sets `summary.auth_error` so callers can ask for a new login.

        Args:
            class_id: Portal class code, e.g. "CTK46A".
            triggered_by: Who started the run, stored on the log entry.
            cancel_event: If set while running, stops before the next student.
        """
        summary = SyncRunSummary()
        logger.info("Class sync starting for %s", class_id)

        try:
            session = await self.session_provider.current_or_refresh()
            roster = await self.gateway.fetch_class_roster(class_id, session)
            classroom_id = self._ensure_class(class_id)
        except NotAuthenticated as exc:
            logger.error("Class sync for %s aborted, Portal login required: %s", class_id, exc)
            summary.abort_unauthenticated(str(exc))
        except (PortalError, LocalStoreError) as exc:
            logger.error("Class sync for %s aborted: %s", class_id, exc)
            summary.abort(str(exc))
        else:
            await self._sync_roster(
                roster, session, classroom_id, class_id, summary, cancel_event
            )

        self._write_log(
            summary,
            sync_type=CLASS_SYNC,
            target_class_id=class_id,
            triggered_by=triggered_by,
        )
        logger.info(
            "Class sync for %s finished: %s (%d processed, %d failed)",
            class_id,
            summary.status,
            summary.records_processed,
            summary.records_failed,
        )
        return summary

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _sync_roster(
        self,
        roster: List[Dict[str, Any]],
        session,
        classroom_id: int,
        class_id: str,
        summary: SyncRunSummary,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        for index, entry in enumerate(roster):
            if index > 0:
                await self.throttle.wait()
            # A cancel issued during the delay stops the run before the next fetch
            if cancel_event is not None and cancel_event.is_set():
                remaining = len(roster) - index
                logger.warning("Class sync for %s cancelled, %d left", class_id, remaining)
                summary.abort(
                    f"Sync cancelled: {remaining} of {len(roster)} students not processed"
                )
                return

            student_id = str(entry["StudentID"])
            try:
                raw = await self._sync_one(student_id, session, classroom_id=classroom_id)
            except NotAuthenticated as exc:
                # Every remaining call would fail the same way
                logger.error("Class sync for %s lost its Portal session: %s", class_id, exc)
                summary.abort_unauthenticated(f"{student_id}: {exc}")
                return
            except RECORD_ERRORS as exc:
                logger.warning("Failed to sync %s: %s", student_id, exc)
                summary.record_failure(student_id, exc)
                continue

            summary.records_processed += 1
            self._fill_class_metadata(classroom_id, raw)

    async def _sync_one(
        self, student_id: str, session, classroom_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """Fetch, normalize and upsert one student. Returns the raw record."""
        raw = await self.gateway.fetch_student_detail(student_id, session)
        fields = normalize_student(
            raw,
            student_id=student_id,
            synced_at=self.clock(),
            email_domain=self.email_domain,
        )
        self._upsert_student(student_id, fields.model_dump(), classroom_id)
        return raw

    def _upsert_student(
        self, student_id: str, fields: Dict[str, Any], classroom_id: Optional[int]
    ) -> None:
        portal_values = {k: v for k, v in fields.items() if k in PORTAL_FIELDS}
        now = self.clock()
        try:
            with Session(self.engine) as s:
                existing = s.exec(
                    select(Student).where(Student.student_id == student_id)
                ).first()

                if existing:
                    # Portal columns only; staff columns keep their values
                    for k, v in portal_values.items():
                        setattr(existing, k, v)
                    if classroom_id is not None:
                        existing.class_id = classroom_id
                    existing.updated_at = now
                    s.add(existing)
                else:
                    s.add(Student(
                        student_id=student_id,
                        class_id=classroom_id,
                        created_at=now,
                        updated_at=now,
                        **portal_values,
                    ))
                s.commit()
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to save student: {exc}") from exc

    def _ensure_class(self, class_id: str) -> int:
        """Create the ClassRoom row if missing. Returns its primary key."""
        try:
            with Session(self.engine) as s:
                classroom = s.exec(
                    select(ClassRoom).where(ClassRoom.class_student_id == class_id)
                ).first()
                if classroom is None:
                    classroom = ClassRoom(class_student_id=class_id, class_name=class_id)
                    s.add(classroom)
                    s.commit()
                    s.refresh(classroom)
                return classroom.id
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to save class {class_id}: {exc}") from exc

    def _fill_class_metadata(self, classroom_id: int, raw: Dict[str, Any]) -> None:
        """Fill blank ClassRoom columns from a student's record. Never overwrites."""
        metadata = normalize_class_metadata(raw)
        try:
            with Session(self.engine) as s:
                classroom = s.get(ClassRoom, classroom_id)
                changed = False
                for k, v in metadata.items():
                    if v is None:
                        continue
                    current = getattr(classroom, k)
                    # class_name starts out as the class code
                    if current is None or (k == "class_name" and current == classroom.class_student_id):
                        setattr(classroom, k, v)
                        changed = True
                if changed:
                    classroom.updated_at = self.clock()
                    s.add(classroom)
                    s.commit()
        except SQLAlchemyError as exc:
            logger.warning("Could not update class metadata for %s: %s", classroom_id, exc)

    def _write_log(self, summary: SyncRunSummary, *, sync_type: str, **targets) -> None:
        try:
            log = self.log_store.append(
                sync_type=sync_type,
                status=summary.status,
                errors=summary.errors,
                records_processed=summary.records_processed,
                records_failed=summary.records_failed,
                **targets,
            )
        except LocalStoreError as exc:
            logger.error("Could not record %s result: %s", sync_type, exc)
            summary.errors.append(str(exc))
            return
        summary.sync_log_id = log.id
