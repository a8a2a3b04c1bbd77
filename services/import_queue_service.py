"""
Queue mode for CSV imports.

Instead of one background loop, every paid row becomes an arq task on
Redis. Workers (workers/csv_worker.py) run the same dedup/upsert per
record and bump the job counters with field-level increments, so any
number of workers can share a job. The task id is "<job_id>:<index>",
which makes re-enqueueing a row a no-op while its task is pending.
"""

from typing import Optional
import structlog
from arq import create_pool
from arq.connections import RedisSettings

from config import settings
from exceptions import DocumentNotFoundError, ImportCancelledError, QueueUnavailableError
from models.import_job import ImportJobStatus
from models.mapping import ColumnMapping
from parsers.csv_parser import CsvSource, iter_paid_rows
from services.cancellation import JobCancellationToken
from services.dedup_service import DedupContext, DedupService, CREATED, EXISTS, SKIPPED
from services.document_store import DocumentStore, IMPORT_JOBS, get_document_store, utc_now
from services.record_normalizer import NormalizedRecord, normalize_row

logger = structlog.get_logger(__name__)

TASK_NAME = "process_import_record"

STATUS_COUNTERS = {
    CREATED: "created",
    EXISTS: "existing",
    SKIPPED: "skipped",
}

_pool = None


async def get_queue_pool():
    """Lazily create the shared arq Redis pool."""
    global _pool
    if _pool is not None:
        return _pool

    if not settings.redis_url:
        raise QueueUnavailableError("REDIS_URL is not configured")
    try:
        _pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    except Exception as e:
        logger.error("queue_pool_failed", error=str(e))
        raise QueueUnavailableError(f"Could not connect to Redis: {e}")
    return _pool


async def close_queue_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def task_id(job_id: str, index: int) -> str:
    return f"{job_id}:{index}"


class ImportQueueService:
    """
    Enqueue paid rows and apply per-record results.

    Args:
        store: Document store for job documents
        dedup_factory: Builds a DedupService per task; receives (context, platform)
    """

    def __init__(self, store: Optional[DocumentStore] = None, dedup_factory=None):
        self.store = store or get_document_store()
        self.dedup_factory = dedup_factory or (lambda context, platform: DedupService(context=context, platform=platform))
        self.table = IMPORT_JOBS

    # ===================
    # PRODUCER
    # ===================

    async def enqueue_rows(
        self,
        pool,
        job_id: str,
        source: CsvSource,
        mapping: ColumnMapping,
        stage_id: str,
        platform: Optional[str] = None,
        start_index: int = 0
    ) -> int:
        """
        Push one task per paid row from start_index on.

        The job moves queued -> running before the first task, so workers
        can complete it even while rows are still being pushed. Only a
        job still queued is started. A cancel or delete seen while pushing
        stops the loop.

        Returns:
            Number of tasks enqueued
        """
        started = self.store.update_where(
            self.table,
            job_id,
            {"status": ImportJobStatus.RUNNING.value, "message": "Enqueueing records..."},
            where={"status": ImportJobStatus.QUEUED.value},
        )
        if started is None:
            logger.info("queued_job_not_started", job_id=job_id)
            return 0

        token = JobCancellationToken(self.store, job_id, settings.import_cancel_check_every)
        count = 0
        for index, row in iter_paid_rows(
            source,
            mapping.status,
            mapping.status_filter,
            start_index=start_index,
            chunksize=settings.import_chunk_size
        ):
            try:
                token.maybe_check()
            except ImportCancelledError as e:
                logger.info("import_enqueue_stopped", job_id=job_id, enqueued=count, deleted=e.deleted)
                return count

            record = normalize_row(row, mapping, index)
            await pool.enqueue_job(
                TASK_NAME,
                job_id,
                record.to_dict(),
                stage_id,
                platform,
                _job_id=task_id(job_id, index),
            )
            count += 1

        self.store.update_where(
            self.table,
            job_id,
            {"message": f"Enqueued {count} records"},
            where={"status": ImportJobStatus.RUNNING.value},
        )
        logger.info("import_rows_enqueued", job_id=job_id, count=count, start_index=start_index)
        return count

    # ===================
    # CONSUMER
    # ===================

    def process_queued_record(
        self,
        job_id: str,
        record_data: dict,
        stage_id: str,
        platform: Optional[str] = None,
        final_attempt: bool = True
    ) -> Optional[str]:
        """
        Run dedup/upsert for one queued record and count the result.

        Tasks for a cancelled or deleted job are dropped. On failure the
        error counter is bumped only on the final attempt; earlier
        attempts re-raise so the worker retries.

        Returns:
            Row status, or None when the task was dropped
        """
        doc = self.store.get(self.table, job_id)
        if doc is None or doc.get("status") == ImportJobStatus.CANCELLED.value:
            logger.info("queued_record_dropped", job_id=job_id, index=record_data.get("index"))
            return None

        record = NormalizedRecord.from_dict(record_data)
        dedup = self.dedup_factory(DedupContext(), platform)
        try:
            result = dedup.process_record(record, stage_id)
        except Exception as e:
            if not final_attempt:
                raise
            logger.warning(
                "queued_record_failed",
                job_id=job_id,
                index=record.index,
                transaction_id=record.transaction_id,
                error=str(e)
            )
            self._count(job_id, {"processed": 1, "errors": 1})
            return "error"

        counters = {"processed": 1, STATUS_COUNTERS[result.status]: 1}
        if result.lead_updated:
            counters["updated"] = 1
        self._count(job_id, counters)
        return result.status

    def _count(self, job_id: str, counters: dict[str, int]) -> None:
        try:
            doc = self.store.increment(self.table, job_id, counters)
        except DocumentNotFoundError:
            logger.info("queued_job_deleted", job_id=job_id)
            return

        total = doc.get("total") or 0
        processed = doc.get("processed") or 0
        if (
            processed >= total
            and doc.get("status") == ImportJobStatus.RUNNING.value
        ):
            message = (
                f"Done! Created: {doc.get('created', 0)}, Existing: {doc.get('existing', 0)}, "
                f"Errors: {doc.get('errors', 0)}, Skipped: {doc.get('skipped', 0)}"
            )
            try:
                self.store.update(self.table, job_id, {
                    "status": ImportJobStatus.COMPLETED.value,
                    "message": message,
                    "last_index": total,
                    "completed_at": utc_now(),
                })
            except DocumentNotFoundError:
                return
            logger.info("queued_import_completed", job_id=job_id, processed=processed)


_service: Optional[ImportQueueService] = None


def get_import_queue_service() -> ImportQueueService:
    global _service
    if _service is None:
        _service = ImportQueueService()
    return _service
