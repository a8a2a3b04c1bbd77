"""
arq worker for queue-mode CSV imports.

Run with:
    arq workers.csv_worker.WorkerSettings

Each task handles one paid row. Failures are retried with exponential
backoff; after the last attempt the row is counted as an error.
"""

import asyncio
from typing import Optional
import structlog
from arq import Retry
from arq.connections import RedisSettings

from config import settings
from services.import_queue_service import get_import_queue_service

logger = structlog.get_logger(__name__)


def retry_delay(job_try: int) -> float:
    """Backoff before attempt job_try + 1: base, 2x base, 4x base..."""
    return settings.queue_backoff_seconds * (2 ** (job_try - 1))


async def process_import_record(
    ctx: dict,
    job_id: str,
    record_data: dict,
    stage_id: str,
    platform: Optional[str] = None
) -> Optional[str]:
    """Task entry point: dedup/upsert one record in a worker thread."""
    job_try = ctx.get("job_try", 1)
    max_tries = settings.queue_max_tries
    service = get_import_queue_service()

    try:
        return await asyncio.to_thread(
            service.process_queued_record,
            job_id,
            record_data,
            stage_id,
            platform,
            job_try >= max_tries,
        )
    except Exception as e:
        delay = retry_delay(job_try)
        logger.warning(
            "queued_record_retry",
            job_id=job_id,
            index=record_data.get("index"),
            job_try=job_try,
            defer=delay,
            error=str(e)
        )
        raise Retry(defer=delay)


async def startup(ctx: dict) -> None:
    logger.info("csv_worker_started", max_jobs=settings.queue_max_jobs, max_tries=settings.queue_max_tries)


async def shutdown(ctx: dict) -> None:
    logger.info("csv_worker_stopped")


class WorkerSettings:
    functions = [process_import_record]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(settings.redis_url or "redis://localhost:6379")
    max_tries = settings.queue_max_tries
    max_jobs = settings.queue_max_jobs
    keep_result = 0
