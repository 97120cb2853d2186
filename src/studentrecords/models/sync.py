"""Sync audit log model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

CLASS_SYNC = "CLASS_SYNC"
STUDENT_SYNC = "STUDENT_SYNC"

STATUS_SUCCESS = "SUCCESS"
STATUS_PARTIAL = "PARTIAL"
STATUS_FAILED = "FAILED"


class SyncLog(SQLModel, table=True):
    """One row per sync run. Written once, never updated."""

    id: Optional[int] = Field(default=None, primary_key=True)
    sync_type: str = Field(index=True)  # CLASS_SYNC, STUDENT_SYNC
    status: str  # SUCCESS, PARTIAL, FAILED
    message: Optional[str] = None  # JSON-encoded list of error lines
    records_processed: int = 0
    records_failed: int = 0
    target_class_id: Optional[str] = None
    target_student_id: Optional[str] = None
    triggered_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
