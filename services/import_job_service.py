"""
Import job orchestration.

start() validates an uploaded CSV against its mapping, counts the paid
rows and persists the job. run_background() then walks the paid rows
one by one through the dedup service, mirroring progress into the job
document (and the import lock) at a bounded cadence. The loop stops
cleanly when the job is cancelled or its document deleted, and a later
resume() continues from the persisted offset.
"""

import math
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional
import structlog

from config import settings
from exceptions import (
    DocumentNotFoundError,
    EmptyImportFileError,
    ImportCancelledError,
    ImportJobNotFoundError,
    JobAlreadyCompletedError,
    JobNotResumableError,
    MissingMappingFieldsError,
    NoPaidRowsError,
)
from models.import_job import (
    ImportEstimate,
    ImportJobResponse,
    ImportJobStatus,
    ImportLockStatus,
    ImportMode,
    JobCounters,
    RecordError,
    TERMINAL_STATUSES,
    is_valid_status_transition,
)
from models.mapping import ColumnMapping
from parsers.csv_parser import CsvSource, iter_paid_rows, read_headers, scan_statuses
from services.cancellation import JobCancellationToken
from services.column_mapper import validate_required
from services.dedup_service import DedupContext, DedupService, CREATED, EXISTS, SKIPPED
from services.document_store import DocumentStore, IMPORT_JOBS, get_document_store, utc_now
from services.import_lock_service import ImportLockService, get_import_lock_service
from services.record_normalizer import normalize_row

logger = structlog.get_logger(__name__)

COUNTER_FIELDS = ("total", "processed", "created", "existing", "updated", "errors", "skipped")


@dataclass
class ImportPlan:
    """A validated file, ready to become a job."""
    source: CsvSource
    filename: Optional[str]
    mapping: ColumnMapping
    stage_id: str
    headers: list[str]
    total: int
    total_rows: int
    seen_statuses: list[str] = field(default_factory=list)


def estimate_seconds(rows: int, seconds_per_row: Optional[float] = None) -> float:
    """Rough processing time for rows paid rows."""
    per_row = seconds_per_row if seconds_per_row is not None else settings.import_seconds_per_row
    return float(math.ceil(rows * per_row))


def format_duration(seconds: float) -> str:
    """
    Human label for an estimate.

    45 → "45 seconds", 90 → "2 minutes", 3900 → "1h 5min"
    """
    seconds = int(math.ceil(seconds))
    if seconds < 60:
        return f"{seconds} seconds"
    minutes = math.ceil(seconds / 60)
    if minutes == 1:
        return "1 minute"
    if minutes < 60:
        return f"{minutes} minutes"
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}min" if rest else f"{hours}h"


def _serialize_errors(errors: list[RecordError]) -> list[dict]:
    return [e.model_dump(mode="json") for e in errors]


class ImportJobService:
    """
    Import job lifecycle and the background processing loop.

    Args:
        store: Document store for job documents
        lock_service: Import lock (background imports hold it)
        dedup_factory: Builds a DedupService for one run; receives
                       (context, platform)
        sleep: Sleep function for the inter-record delay
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        lock_service: Optional[ImportLockService] = None,
        dedup_factory: Optional[Callable[[DedupContext, Optional[str]], DedupService]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store or get_document_store()
        self.lock_service = lock_service or get_import_lock_service()
        self.dedup_factory = dedup_factory or (lambda context, platform: DedupService(context=context, platform=platform))
        self.table = IMPORT_JOBS
        self._sleep = sleep

    # ===================
    # VALIDATION
    # ===================

    def prepare(
        self,
        source: CsvSource,
        mapping: ColumnMapping,
        stage_id: str,
        filename: Optional[str] = None
    ) -> ImportPlan:
        """
        Validate the file and count the rows that will be imported.

        Raises:
            EmptyImportFileError: No header or no data rows
            MissingMappingFieldsError: Required mapping keys unresolved
            NoPaidRowsError: No row carries the paid status value
        """
        headers = read_headers(source)
        if not headers:
            raise EmptyImportFileError(filename)

        missing = validate_required(mapping, headers)
        if missing:
            raise MissingMappingFieldsError(missing, headers)

        scan = scan_statuses(
            source,
            mapping.status,
            mapping.status_filter,
            chunksize=settings.import_chunk_size
        )
        if scan.total_rows == 0:
            raise EmptyImportFileError(filename)
        if scan.paid_rows == 0:
            raise NoPaidRowsError(mapping.status_filter, scan.seen_statuses)

        return ImportPlan(
            source=source,
            filename=filename,
            mapping=mapping,
            stage_id=stage_id,
            headers=headers,
            total=scan.paid_rows,
            total_rows=scan.total_rows,
            seen_statuses=scan.seen_statuses,
        )

    def estimate(self, source: CsvSource, mapping: ColumnMapping, filename: Optional[str] = None) -> ImportEstimate:
        """Paid row count and time estimate, without creating a job."""
        headers = read_headers(source)
        missing = validate_required(mapping, headers)
        if missing:
            raise MissingMappingFieldsError(missing, headers)

        scan = scan_statuses(source, mapping.status, mapping.status_filter, chunksize=settings.import_chunk_size)
        seconds = estimate_seconds(scan.paid_rows)
        return ImportEstimate(
            filename=filename,
            total_rows=scan.total_rows,
            paid_rows=scan.paid_rows,
            status_filter=mapping.status_filter,
            seen_statuses=scan.seen_statuses,
            estimated_seconds=seconds,
            estimated_label=format_duration(seconds),
        )

    # ===================
    # JOB LIFECYCLE
    # ===================

    def start(
        self,
        source: CsvSource,
        mapping: ColumnMapping,
        stage_id: str,
        platform: Optional[str] = None,
        filename: Optional[str] = None,
        mode: ImportMode = ImportMode.BACKGROUND,
        started_by: Optional[str] = None
    ) -> tuple[ImportJobResponse, ImportPlan]:
        """
        Validate the file and persist a queued job.

        Background imports take the import lock here; nothing is written
        when validation fails.

        Raises:
            ImportLockedError: Another background import is running
            (plus everything prepare() raises)
        """
        plan = self.prepare(source, mapping, stage_id, filename)
        job_id = str(uuid.uuid4())
        seconds = estimate_seconds(plan.total)

        if mode == ImportMode.BACKGROUND:
            self.lock_service.acquire(
                platform=platform,
                filename=filename,
                started_by=started_by,
                job_id=job_id,
                total=plan.total,
                estimated_seconds=seconds * 2,
            )

        now = utc_now()
        doc = self.store.set(self.table, job_id, {
            "status": ImportJobStatus.QUEUED.value,
            "mode": mode.value,
            "platform": platform,
            "stage_id": stage_id,
            "mapping": mapping.model_dump(),
            "filename": filename,
            "started_by": started_by,
            "total": plan.total,
            "processed": 0,
            "created": 0,
            "existing": 0,
            "updated": 0,
            "errors": 0,
            "skipped": 0,
            "last_index": 0,
            "recent_errors": [],
            "message": f"Queued {plan.total} records",
            "created_at": now,
        })

        logger.info(
            "import_job_created",
            job_id=job_id,
            platform=platform,
            mode=mode.value,
            total=plan.total,
            total_rows=plan.total_rows
        )
        return ImportJobResponse(**doc), plan

    def get(self, job_id: str) -> ImportJobResponse:
        doc = self.store.get(self.table, job_id)
        if not doc:
            raise ImportJobNotFoundError(job_id)
        return ImportJobResponse(**doc)

    def list_recent(self, limit: int = 20) -> list[ImportJobResponse]:
        docs = self.store.query(self.table, order_by="created_at", desc=True, limit=limit)
        return [ImportJobResponse(**d) for d in docs]

    def cancel(self, job_id: str) -> ImportJobResponse:
        """
        Mark a job cancelled. The running loop notices on its next check.

        Terminal jobs are returned unchanged.
        """
        job = self.get(job_id)
        if not is_valid_status_transition(job.status, ImportJobStatus.CANCELLED):
            return job

        try:
            doc = self.store.update(self.table, job_id, {
                "status": ImportJobStatus.CANCELLED.value,
                "message": "Cancelled by operator",
            })
        except DocumentNotFoundError:
            raise ImportJobNotFoundError(job_id)

        logger.info("import_job_cancelled", job_id=job_id, processed=job.processed)
        return ImportJobResponse(**doc)

    def fail(self, job_id: str, message: str) -> None:
        """Mark a job as errored before any row ran (e.g. enqueueing failed)."""
        try:
            self.store.update(self.table, job_id, {
                "status": ImportJobStatus.ERROR.value,
                "message": message,
            })
        except DocumentNotFoundError:
            return
        logger.error("import_job_failed_to_start", job_id=job_id, message=message)

    def delete(self, job_id: str) -> None:
        """Remove the job document; a running loop stops without further writes."""
        if not self.store.delete(self.table, job_id):
            raise ImportJobNotFoundError(job_id)
        logger.info("import_job_deleted", job_id=job_id)

    def watch(
        self,
        job_id: str,
        interval: float = 1.0,
        timeout: Optional[float] = None
    ) -> Iterator[Optional[ImportJobResponse]]:
        """
        Yield the job on every change until it reaches a terminal status.

        Yields None once if the job is deleted while watched.
        """
        for doc in self.store.watch(self.table, job_id, interval=interval, timeout=timeout):
            if doc is None:
                yield None
                return
            job = ImportJobResponse(**doc)
            yield job
            if job.status in TERMINAL_STATUSES:
                return

    def prepare_resume(
        self,
        job_id: str,
        source: CsvSource,
        filename: Optional[str] = None
    ) -> tuple[ImportJobResponse, ColumnMapping]:
        """
        Check a re-uploaded file can continue job_id and flip it to running.

        Only background jobs resume; they retake the import lock here.

        Raises:
            ImportJobNotFoundError: Unknown job
            JobAlreadyCompletedError: Offset already at the end
            JobNotResumableError: Job never started, or runs in queue mode
            ImportLockedError: Another import is running
            MissingMappingFieldsError / NoPaidRowsError: File does not fit
        """
        job = self.get(job_id)
        if job.status == ImportJobStatus.COMPLETED or (job.total and job.last_index >= job.total):
            raise JobAlreadyCompletedError(job_id, job.last_index, job.total)
        if job.status == ImportJobStatus.QUEUED or job.mode != ImportMode.BACKGROUND:
            raise JobNotResumableError(job_id, job.status.value)

        doc = self.store.get(self.table, job_id) or {}
        mapping = ColumnMapping(**(doc.get("mapping") or {}))
        plan = self.prepare(source, mapping, job.stage_id or "", filename)
        if plan.total != job.total:
            logger.warning(
                "import_resume_total_mismatch",
                job_id=job_id,
                job_total=job.total,
                file_total=plan.total
            )

        self.lock_service.acquire(
            platform=job.platform,
            filename=filename or job.filename,
            started_by=job.started_by,
            job_id=job_id,
            total=job.total,
            estimated_seconds=estimate_seconds(job.total - job.last_index) * 2,
        )
        updated = self.store.update(self.table, job_id, {
            "status": ImportJobStatus.RUNNING.value,
            "message": f"Resuming from record {job.last_index}",
        })
        logger.info("import_job_resumed", job_id=job_id, last_index=job.last_index, total=job.total)
        return ImportJobResponse(**updated), mapping

    # ===================
    # BACKGROUND LOOP
    # ===================

    def run_spooled(self, job_id: str, path: str, **kwargs) -> None:
        """run_background() on a spooled upload, deleting the file afterwards."""
        try:
            self.run_background(job_id, path, **kwargs)
        finally:
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("spooled_upload_cleanup_failed", path=path, error=str(e))

    def run_background(
        self,
        job_id: str,
        source: CsvSource,
        mapping: Optional[ColumnMapping] = None,
        stage_id: Optional[str] = None,
        start_index: Optional[int] = None,
        token: Optional[JobCancellationToken] = None
    ) -> None:
        """
        Process the job's paid rows sequentially from start_index.

        Never raises: outcome is written to the job document (unless the
        document was deleted, in which case nothing is written).
        """
        doc = self.store.get(self.table, job_id)
        if doc is None:
            logger.warning("import_job_missing_before_run", job_id=job_id)
            return

        mapping = mapping or ColumnMapping(**(doc.get("mapping") or {}))
        stage_id = stage_id or doc.get("stage_id")
        platform = doc.get("platform")
        holds_lock = doc.get("mode", ImportMode.BACKGROUND.value) == ImportMode.BACKGROUND.value
        if start_index is None:
            start_index = doc.get("last_index") or 0

        counters = JobCounters(**{k: doc.get(k) or 0 for k in COUNTER_FIELDS})
        recent_errors = [RecordError(**e) for e in (doc.get("recent_errors") or [])]
        last_index = start_index
        token = token or JobCancellationToken(self.store, job_id, settings.import_cancel_check_every)
        dedup = self.dedup_factory(DedupContext(), platform)

        progress_every = settings.import_progress_every
        error_log_size = settings.import_error_log_size
        delay = settings.import_record_delay_seconds

        def flush(message: Optional[str] = None, **extra) -> None:
            payload = {
                **counters.model_dump(),
                "last_index": last_index,
                "recent_errors": _serialize_errors(recent_errors),
                "message": message or f"Processing {counters.processed}/{counters.total}",
                **extra,
            }
            self.store.update(self.table, job_id, payload)
            if holds_lock:
                self.lock_service.update_progress(
                    **counters.model_dump(),
                    recent_errors=payload["recent_errors"],
                    message=payload["message"],
                )

        logger.info("import_job_started", job_id=job_id, start_index=start_index, total=counters.total)

        try:
            token.check()
            self.store.update(self.table, job_id, {
                "status": ImportJobStatus.RUNNING.value,
                "message": f"Processing {counters.processed}/{counters.total}",
            })

            last_percent = self._percent(counters)
            since_flush = 0

            for index, row in iter_paid_rows(
                source,
                mapping.status,
                mapping.status_filter,
                start_index=start_index,
                chunksize=settings.import_chunk_size
            ):
                token.maybe_check()

                record = normalize_row(row, mapping, index)
                try:
                    result = dedup.process_record(record, stage_id)
                    if result.status == CREATED:
                        counters.created += 1
                    elif result.status == EXISTS:
                        counters.existing += 1
                    elif result.status == SKIPPED:
                        counters.skipped += 1
                    if result.lead_updated:
                        counters.updated += 1
                except Exception as e:
                    counters.errors += 1
                    recent_errors.append(RecordError(
                        index=index,
                        transaction_id=record.transaction_id or None,
                        email=record.email,
                        error=str(e)[:500],
                    ))
                    del recent_errors[:-error_log_size]
                    logger.warning(
                        "import_record_failed",
                        job_id=job_id,
                        index=index,
                        transaction_id=record.transaction_id,
                        error=str(e)
                    )

                counters.processed += 1
                last_index = index + 1
                since_flush += 1

                percent = self._percent(counters)
                if percent != last_percent or since_flush >= progress_every:
                    flush()
                    last_percent = percent
                    since_flush = 0

                if delay:
                    self._sleep(delay)

            # Last look before declaring victory
            token.check()
            message = (
                f"Done! Created: {counters.created}, Existing: {counters.existing}, "
                f"Errors: {counters.errors}, Skipped: {counters.skipped}"
            )
            flush(
                message=message,
                status=ImportJobStatus.COMPLETED.value,
                completed_at=utc_now(),
            )
            if holds_lock:
                self.lock_service.release(ImportLockStatus.COMPLETED, message, job_id=job_id)

            logger.info("import_job_completed", job_id=job_id, **counters.model_dump())

        except ImportCancelledError as e:
            if not e.deleted:
                try:
                    flush(message=f"Cancelled after {counters.processed}/{counters.total}")
                except DocumentNotFoundError:
                    pass
            if holds_lock:
                self.lock_service.release(ImportLockStatus.CANCELLED, job_id=job_id)
            logger.info(
                "import_job_stopped",
                job_id=job_id,
                deleted=e.deleted,
                processed=counters.processed
            )

        except DocumentNotFoundError:
            if holds_lock:
                self.lock_service.release(ImportLockStatus.CANCELLED, job_id=job_id)
            logger.info("import_job_deleted_during_write", job_id=job_id, processed=counters.processed)

        except Exception as e:
            logger.error("import_job_failed", job_id=job_id, error=str(e), error_type=type(e).__name__)
            try:
                flush(message=f"Import failed: {e}", status=ImportJobStatus.ERROR.value)
            except DocumentNotFoundError:
                pass
            except Exception as write_err:
                logger.error("import_job_error_write_failed", job_id=job_id, error=str(write_err))
            if holds_lock:
                self.lock_service.release(ImportLockStatus.ERROR, f"Import failed: {e}", job_id=job_id)

    @staticmethod
    def _percent(counters: JobCounters) -> int:
        if not counters.total:
            return 0
        return int(counters.processed * 100 / counters.total)


_service: Optional[ImportJobService] = None


def get_import_job_service() -> ImportJobService:
    global _service
    if _service is None:
        _service = ImportJobService()
    return _service
