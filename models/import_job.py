"""
Import job and import lock schemas.

Job documents are mirrored into the store so the UI can poll (or stream)
progress; the same shape is used by the background loop and the queue
workers.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class ImportJobStatus(str, Enum):
    """Import job status values."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class ImportMode(str, Enum):
    """How rows are executed."""
    BACKGROUND = "background"
    QUEUE = "queue"


# Status order for transition validation (lower index = earlier in flow)
STATUS_ORDER = {
    ImportJobStatus.QUEUED: 0,
    ImportJobStatus.RUNNING: 1,
    ImportJobStatus.COMPLETED: 2,
    ImportJobStatus.CANCELLED: 2,
    ImportJobStatus.ERROR: 2,
}

TERMINAL_STATUSES = {
    ImportJobStatus.COMPLETED,
    ImportJobStatus.CANCELLED,
    ImportJobStatus.ERROR,
}


def is_valid_status_transition(
    current: ImportJobStatus,
    new: ImportJobStatus,
    resume: bool = False
) -> bool:
    """
    Check if a job status transition is valid.

    Rules:
    - Forward only (queued -> running -> terminal)
    - completed is final
    - cancelled/error may go back to running only through an explicit resume
    """
    if current == ImportJobStatus.COMPLETED:
        return False

    if resume:
        return current in (ImportJobStatus.CANCELLED, ImportJobStatus.ERROR) and new == ImportJobStatus.RUNNING

    return STATUS_ORDER[new] > STATUS_ORDER[current]


class RecordError(BaseSchema):
    """One failed row kept in the job's recent error log."""

    index: int
    transaction_id: Optional[str] = None
    email: Optional[str] = None
    error: str
    at: datetime = Field(default_factory=datetime.utcnow)


class JobCounters(BaseSchema):
    """Progress counters shared by jobs and the import lock."""

    total: int = 0
    processed: int = 0
    created: int = 0
    existing: int = 0
    updated: int = 0
    errors: int = 0
    skipped: int = 0


class ImportJobResponse(JobCounters):
    """Import job document."""

    id: str
    status: ImportJobStatus
    mode: ImportMode = ImportMode.BACKGROUND
    platform: Optional[str] = None
    stage_id: Optional[str] = None
    filename: Optional[str] = None
    last_index: int = 0
    message: Optional[str] = None
    recent_errors: list[RecordError] = Field(default_factory=list)
    started_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def percent(self) -> int:
        if not self.total:
            return 0
        return int(self.processed * 100 / self.total)


class ImportStartResponse(BaseSchema):
    """Returned when an import is accepted."""

    job_id: str
    status: ImportJobStatus
    mode: ImportMode
    total: int
    estimated_seconds: float
    message: str


class ImportEstimate(BaseSchema):
    """Paid row count and processing time estimate for a file."""

    filename: Optional[str] = None
    total_rows: int
    paid_rows: int
    status_filter: str
    seen_statuses: list[str] = Field(default_factory=list)
    estimated_seconds: float
    estimated_label: str


# ===================
# IMPORT LOCK
# ===================

class ImportLockStatus(str, Enum):
    """Import lock status values."""
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ImportLockResponse(JobCounters):
    """The singleton "an import is running" document."""

    id: str
    is_locked: bool
    status: ImportLockStatus
    platform: Optional[str] = None
    filename: Optional[str] = None
    started_by: Optional[str] = None
    job_id: Optional[str] = None
    message: Optional[str] = None
    recent_errors: list[RecordError] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    estimated_unlock: Optional[datetime] = None
    updated_at: Optional[datetime] = None
