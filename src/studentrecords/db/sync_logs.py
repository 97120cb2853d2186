"""Append-only store for sync run history."""
import json
import math
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from studentrecords.models.sync import SyncLog
from studentrecords.portal.errors import LocalStoreError

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class SyncLogStore:
    """Inserts and lists SyncLog rows. Rows are never updated or deleted."""

    def __init__(self, engine):
        self.engine = engine

    def append(
        self,
        *,
        sync_type: str,
        status: str,
        errors: Optional[List[str]] = None,
        records_processed: int = 0,
        records_failed: int = 0,
        target_class_id: Optional[str] = None,
        target_student_id: Optional[str] = None,
        triggered_by: Optional[str] = None,
    ) -> SyncLog:
        """
        Insert one log entry.

        Errors are stored as a JSON list in `message`, or NULL when empty.

        Raises:
            LocalStoreError: if the insert fails.
        """
        log = SyncLog(
            sync_type=sync_type,
            status=status,
            message=json.dumps(errors, ensure_ascii=False) if errors else None,
            records_processed=records_processed,
            records_failed=records_failed,
            target_class_id=target_class_id,
            target_student_id=target_student_id,
            triggered_by=triggered_by,
        )
        try:
            with Session(self.engine) as s:
                s.add(log)
                s.commit()
                s.refresh(log)
        except SQLAlchemyError as exc:
            raise LocalStoreError(f"Failed to write sync log: {exc}") from exc
        return log

    def list(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sync_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Return one page of log entries, newest first.

        Returns:
            {"logs": [SyncLog, ...],
             "pagination": {"page", "limit", "total", "totalPages"}}
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        query = select(SyncLog)
        count_query = select(func.count()).select_from(SyncLog)
        if sync_type:
            query = query.where(SyncLog.sync_type == sync_type)
            count_query = count_query.where(SyncLog.sync_type == sync_type)

        with Session(self.engine) as s:
            logs = s.exec(
                query.order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            total = s.exec(count_query).one()

        return {
            "logs": list(logs),
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }

    def latest(self) -> Optional[SyncLog]:
        with Session(self.engine) as s:
            return s.exec(
                select(SyncLog).order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
            ).first()
