"""
CSV import API routes.

Upload a platform sales export, map its columns, and push the paid rows
into the Datacrazy CRM as a tracked job (background loop or arq queue).
"""

import json
import os
import tempfile
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, File, Form, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
import structlog

from config import settings
from config.platforms import PLATFORMS
from exceptions import AppError, ValidationError
from models.import_job import (
    ImportEstimate,
    ImportJobResponse,
    ImportLockResponse,
    ImportMode,
    ImportStartResponse,
)
from models.mapping import ColumnMapping, DetectColumnsResponse
from parsers.csv_parser import read_headers
from services.column_mapper import auto_detect, resolve_platform, validate_required
from services.import_job_service import estimate_seconds, format_duration, get_import_job_service
from services.import_lock_service import get_import_lock_service
from services.import_queue_service import get_import_queue_service, get_queue_pool
from services.mapping_template_service import get_mapping_template_service

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/import-csv", tags=["CSV Import"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# HELPERS
# ===================

def _resolve_mapping(
    headers: list[str],
    platform: Optional[str],
    mapping_json: Optional[str],
    stage_id: Optional[str],
    template_id: Optional[str],
    require_stage: bool = True
) -> tuple[ColumnMapping, Optional[str]]:
    """
    Pick the mapping for an upload.

    Priority: saved template, then a custom mapping sent with the upload
    (which needs its own stage), then a built-in platform preset.
    An explicit stage_id always wins over the template/preset stage.
    """
    if template_id:
        template = get_mapping_template_service().apply(template_id, headers)
        return template.mapping, stage_id or template.stage_id

    if mapping_json:
        try:
            mapping = ColumnMapping(**json.loads(mapping_json))
        except (ValueError, TypeError) as e:
            raise ValidationError(f"Invalid mapping: {e}", code="MAPPING_INVALID")
        if require_stage and not stage_id:
            raise ValidationError("stage_id is required with a custom mapping", code="STAGE_REQUIRED")
        return mapping, stage_id

    if platform:
        mapping, preset_stage = resolve_platform(platform)
        return mapping, stage_id or preset_stage

    raise ValidationError(
        "Send a platform, a template_id or a custom mapping",
        code="MAPPING_REQUIRED",
        details={"platforms": sorted(PLATFORMS)}
    )


def _spool(content: bytes) -> str:
    """Write an upload to disk so the job can stream it after the request ends."""
    handle = tempfile.NamedTemporaryFile(
        delete=False,
        dir=settings.import_upload_dir,
        prefix="import-",
        suffix=".csv"
    )
    with handle:
        handle.write(content)
    return handle.name


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except OSError as e:
        logger.warning("spooled_upload_cleanup_failed", path=path, error=str(e))


# ===================
# FILE INSPECTION
# ===================

@router.get("/platforms")
async def list_platforms():
    """Built-in platform presets."""
    return [
        {
            "key": preset.key,
            "label": preset.label,
            "stage_id": preset.stage_id,
            "status_filter": preset.status_filter,
            "icon": preset.icon,
            "columns": preset.columns,
        }
        for preset in PLATFORMS.values()
    ]


@router.post("/detect-columns", response_model=DetectColumnsResponse)
async def detect_columns(file: UploadFile = File(...)):
    """
    Read the header row and guess the column mapping.

    Also reports which saved templates still fit the file.
    """
    try:
        content = await file.read()
        headers = read_headers(content)
        mapping = auto_detect(headers)

        return DetectColumnsResponse(
            filename=file.filename,
            headers=headers,
            mapping=mapping,
            missing=validate_required(mapping, headers),
            templates=get_mapping_template_service().check_compatibility(headers),
        )

    except Exception as e:
        return handle_error(e)


@router.post("/estimate", response_model=ImportEstimate)
async def estimate_import(
    file: UploadFile = File(...),
    platform: Optional[str] = Form(None),
    mapping: Optional[str] = Form(None),
    stage_id: Optional[str] = Form(None),
    template_id: Optional[str] = Form(None),
):
    """Count paid rows and estimate how long the import takes."""
    try:
        content = await file.read()
        headers = read_headers(content)
        column_mapping, _ = _resolve_mapping(
            headers, platform, mapping, stage_id, template_id, require_stage=False
        )

        return await run_in_threadpool(get_import_job_service().estimate, content, column_mapping, file.filename)

    except Exception as e:
        return handle_error(e)


# ===================
# JOB ROUTES
# ===================

@router.post("/start", response_model=ImportStartResponse, status_code=202)
async def start_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    platform: Optional[str] = Form(None),
    mapping: Optional[str] = Form(None),
    stage_id: Optional[str] = Form(None),
    template_id: Optional[str] = Form(None),
    mode: ImportMode = Form(ImportMode.BACKGROUND),
    started_by: Optional[str] = Form(None),
):
    """
    Validate the upload and start an import job.

    background: rows run in this process after the response is sent.
    queue: every paid row is pushed to Redis for the arq workers.
    """
    path = None
    try:
        content = await file.read()
        headers = read_headers(content)
        column_mapping, resolved_stage = _resolve_mapping(headers, platform, mapping, stage_id, template_id)

        # Fail before creating a job when Redis is down
        pool = await get_queue_pool() if mode == ImportMode.QUEUE else None

        path = _spool(content)
        service = get_import_job_service()
        job, plan = await run_in_threadpool(
            service.start,
            path,
            column_mapping,
            resolved_stage,
            platform=platform,
            filename=file.filename,
            mode=mode,
            started_by=started_by,
        )

        if mode == ImportMode.BACKGROUND:
            background_tasks.add_task(service.run_spooled, job.id, path)
            path = None
        else:
            try:
                await get_import_queue_service().enqueue_rows(
                    pool, job.id, path, column_mapping, resolved_stage, platform
                )
            except Exception as e:
                service.fail(job.id, f"Could not enqueue rows: {e}")
                raise

        seconds = estimate_seconds(plan.total)
        return ImportStartResponse(
            job_id=job.id,
            status=job.status,
            mode=mode,
            total=plan.total,
            estimated_seconds=seconds,
            message=f"Importing {plan.total} records (about {format_duration(seconds)})",
        )

    except Exception as e:
        return handle_error(e)
    finally:
        if path:
            _discard(path)


@router.get("/jobs", response_model=list[ImportJobResponse])
async def list_jobs(limit: int = Query(20, ge=1, le=100)):
    """Most recent import jobs first."""
    try:
        return get_import_job_service().list_recent(limit)
    except Exception as e:
        return handle_error(e)


@router.get("/jobs/{job_id}", response_model=ImportJobResponse)
async def get_job(job_id: str):
    try:
        return get_import_job_service().get(job_id)
    except Exception as e:
        return handle_error(e)


@router.get("/jobs/{job_id}/events")
async def stream_job(job_id: str, interval: float = Query(1.0, ge=0.2, le=10)):
    """
    Server-sent events with the job document on every change.

    The stream ends when the job reaches a terminal status; a deleted
    job ends it with a "deleted" event.
    """
    try:
        service = get_import_job_service()
        service.get(job_id)

        def events():
            for job in service.watch(job_id, interval=interval):
                if job is None:
                    yield f"event: deleted\ndata: {json.dumps({'id': job_id})}\n\n"
                    return
                yield f"data: {job.model_dump_json()}\n\n"

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"}
        )

    except Exception as e:
        return handle_error(e)


@router.post("/jobs/{job_id}/cancel", response_model=ImportJobResponse)
async def cancel_job(job_id: str):
    """Ask a running job to stop; already processed rows stay in the CRM."""
    try:
        return get_import_job_service().cancel(job_id)
    except Exception as e:
        return handle_error(e)


@router.delete("/jobs/{job_id}", status_code=204)
async def delete_job(job_id: str):
    try:
        get_import_job_service().delete(job_id)
        return None
    except Exception as e:
        return handle_error(e)


@router.post("/jobs/{job_id}/resume", response_model=ImportJobResponse, status_code=202)
async def resume_job(
    job_id: str,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
):
    """
    Continue a cancelled or failed background job from its last offset.

    The same file has to be uploaded again.
    """
    path = None
    try:
        content = await file.read()
        path = _spool(content)
        service = get_import_job_service()
        job, column_mapping = await run_in_threadpool(service.prepare_resume, job_id, path, file.filename)

        background_tasks.add_task(
            service.run_spooled,
            job.id,
            path,
            mapping=column_mapping,
            start_index=job.last_index,
        )
        path = None
        return job

    except Exception as e:
        return handle_error(e)
    finally:
        if path:
            _discard(path)


# ===================
# LOCK ROUTES
# ===================

@router.get("/lock", response_model=Optional[ImportLockResponse])
async def get_lock():
    """Current import lock (null when none was ever taken)."""
    try:
        return get_import_lock_service().get()
    except Exception as e:
        return handle_error(e)


@router.get("/lock/status")
async def lock_status():
    try:
        service = get_import_lock_service()
        return {"locked": service.is_held(), "lock": service.get()}
    except Exception as e:
        return handle_error(e)


@router.delete("/lock")
async def force_release_lock():
    """Operator override for a lock left behind by a crashed import."""
    try:
        existed = get_import_lock_service().force_release()
        return {"released": existed}
    except Exception as e:
        return handle_error(e)
