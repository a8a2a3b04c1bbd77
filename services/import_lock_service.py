"""
Import lock: the singleton "an import is running" document.

Only one CSV import may run at a time. The lock also mirrors the running
job's counters so any page can show progress. Acquisition is
read-then-write (the store has no compare-and-swap), which is accepted
for single-operator tooling.

A lock whose estimated_unlock time has passed is treated as released,
so a crashed worker cannot block imports forever.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional
import structlog

from exceptions import DocumentNotFoundError, ImportLockedError
from models.import_job import ImportLockResponse, ImportLockStatus
from services.document_store import DocumentStore, IMPORT_LOCKS, get_document_store

logger = structlog.get_logger(__name__)

LOCK_ID = "import-csv-lock"

RELEASE_MESSAGES = {
    ImportLockStatus.COMPLETED: "Import completed",
    ImportLockStatus.ERROR: "Import failed",
    ImportLockStatus.CANCELLED: "Import cancelled",
}


def _parse_time(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)


class ImportLockService:
    """Acquire, update and release the import lock."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        now: Callable[[], datetime] = datetime.utcnow
    ):
        self.store = store or get_document_store()
        self.table = IMPORT_LOCKS
        self._now = now

    def get(self) -> Optional[ImportLockResponse]:
        """Current lock document, or None if never taken / force released."""
        doc = self.store.get(self.table, LOCK_ID)
        if not doc:
            return None
        return ImportLockResponse(**doc)

    def is_held(self) -> bool:
        """
        True while an import holds the lock.

        A running lock past its estimated unlock time counts as free.
        """
        lock = self.get()
        if not lock or not lock.is_locked or lock.status != ImportLockStatus.RUNNING:
            return False

        unlock_at = _parse_time(lock.estimated_unlock)
        if unlock_at and unlock_at < self._now():
            logger.warning(
                "import_lock_expired",
                job_id=lock.job_id,
                estimated_unlock=str(lock.estimated_unlock)
            )
            return False
        return True

    def acquire(
        self,
        platform: Optional[str],
        filename: Optional[str] = None,
        started_by: Optional[str] = None,
        job_id: Optional[str] = None,
        total: int = 0,
        estimated_seconds: Optional[float] = None
    ) -> ImportLockResponse:
        """
        Take the lock for a new import.

        Raises:
            ImportLockedError: Another import is running
        """
        if self.is_held():
            raise ImportLockedError(self.store.get(self.table, LOCK_ID))

        now = self._now()
        estimated_unlock = None
        if estimated_seconds is not None:
            estimated_unlock = (now + timedelta(seconds=estimated_seconds)).isoformat()

        doc = self.store.set(self.table, LOCK_ID, {
            "is_locked": True,
            "status": ImportLockStatus.RUNNING.value,
            "platform": platform,
            "filename": filename,
            "started_by": started_by,
            "job_id": job_id,
            "total": total,
            "processed": 0,
            "created": 0,
            "existing": 0,
            "updated": 0,
            "errors": 0,
            "skipped": 0,
            "recent_errors": [],
            "started_at": now.isoformat(),
            "estimated_unlock": estimated_unlock,
            "message": "Starting import...",
        })

        logger.info("import_lock_acquired", job_id=job_id, platform=platform, filename=filename)
        return ImportLockResponse(**doc)

    def update_progress(self, **fields) -> None:
        """Mirror job counters onto the lock. A force-released lock stays gone."""
        try:
            self.store.update(self.table, LOCK_ID, fields)
        except DocumentNotFoundError:
            logger.debug("import_lock_missing_on_update")

    def release(
        self,
        status: ImportLockStatus,
        message: Optional[str] = None,
        job_id: Optional[str] = None
    ) -> None:
        """
        Flip the lock off, keeping the final counters for display.

        With job_id set, a lock now owned by another import is left alone.
        """
        if job_id is not None:
            current = self.get()
            if current and current.job_id and current.job_id != job_id:
                logger.info("import_lock_owned_elsewhere", job_id=job_id, owner=current.job_id)
                return
        try:
            self.store.update(self.table, LOCK_ID, {
                "is_locked": False,
                "status": status.value,
                "message": message or RELEASE_MESSAGES[status],
                "estimated_unlock": None,
            })
        except DocumentNotFoundError:
            logger.debug("import_lock_missing_on_release")
            return
        logger.info("import_lock_released", status=status.value)

    def force_release(self) -> bool:
        """Delete the lock document outright (operator override)."""
        deleted = self.store.delete(self.table, LOCK_ID)
        logger.warning("import_lock_force_released", existed=deleted)
        return deleted


_service: Optional[ImportLockService] = None


def get_import_lock_service() -> ImportLockService:
    global _service
    if _service is None:
        _service = ImportLockService()
    return _service
