"""
Label workstation API routes.

Load a Hotmart sales export as an order table, merge orders per
recipient, generate Correios labels through ViPP, print them and export
the tracking CSV for Hotmart.
"""

import uuid
from datetime import date
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, File, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
import structlog

from config import settings
from config.platforms import ECT_SERVICES
from exceptions import AppError, ConfirmationRequiredError
from integrations.vipp import build_print_url, get_vipp_client, masked_config
from models.labels import (
    ExportTrackingRequest,
    GenerateLabelsRequest,
    GenerateLabelsResponse,
    MergedOrder,
    MergeRequest,
    Order,
    OrderTableResponse,
    PrintLabelsRequest,
    UnmergeRequest,
    VippCredentialsCheckRequest,
)
from services.cancellation import TokenRegistry
from services.label_service import export_tracking_csv, get_label_service
from services.order_merge_service import get_order_merge_service

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/labels", tags=["Labels"])

# Running label batches, by batch id
batches = TokenRegistry()


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
# ORDER TABLE
# ===================

@router.get("/services")
async def list_services():
    """ECT service codes offered for label generation."""
    return [{"code": code, "name": name} for code, name in ECT_SERVICES.items()]


@router.post("/orders", response_model=OrderTableResponse)
async def load_orders(file: UploadFile = File(...)):
    """
    Build the order table from a Hotmart sales export.

    Only paid physical-product sales become orders. Labels generated
    earlier and stored merges are applied.
    """
    try:
        content = await file.read()
        return await run_in_threadpool(get_label_service().load_orders, content)
    except Exception as e:
        return handle_error(e)


@router.post("/merge", response_model=MergedOrder, status_code=201)
async def merge_orders(request: MergeRequest):
    """Merge orders for the same recipient into one shipment."""
    try:
        return get_order_merge_service().merge(request.orders, request.label_strategy)
    except Exception as e:
        return handle_error(e)


@router.post("/unmerge", response_model=list[Order])
async def unmerge_order(request: UnmergeRequest):
    """Split a merged order back into its original orders."""
    try:
        return get_order_merge_service().unmerge(request.order)
    except Exception as e:
        return handle_error(e)


# ===================
# GENERATION
# ===================

@router.post("/generate", response_model=GenerateLabelsResponse)
async def generate_labels(request: GenerateLabelsRequest, background_tasks: BackgroundTasks):
    """
    Generate labels for the selected orders.

    Runs until every order is handled or the batch is cancelled through
    /batches/{batch_id}/cancel. Notifications run as a background task
    after the response is sent.
    """
    batch_id = request.batch_id or str(uuid.uuid4())
    request = request.model_copy(update={"batch_id": batch_id})
    token = batches.create(batch_id)
    try:
        return await run_in_threadpool(
            get_label_service().generate_labels, request, token, background_tasks.add_task
        )
    except Exception as e:
        return handle_error(e)
    finally:
        batches.discard(batch_id)


@router.post("/batches/{batch_id}/cancel")
async def cancel_batch(batch_id: str):
    """Stop a running batch before its next label request."""
    cancelled = batches.cancel(batch_id)
    logger.info("label_batch_cancel_requested", batch_id=batch_id, found=cancelled)
    return {"batch_id": batch_id, "cancelled": cancelled}


# ===================
# PRINT / EXPORT
# ===================

@router.post("/print")
async def print_labels(request: PrintLabelsRequest):
    """
    Consolidated PDF for label codes.

    Returns the PDF itself, or {"url": ...} when ViPP answers with a page
    the operator has to open.
    """
    try:
        result = await run_in_threadpool(get_label_service().print_labels, request.codes)
        if result.pdf is not None:
            return Response(
                content=result.pdf,
                media_type="application/pdf",
                headers={"Content-Disposition": 'inline; filename="etiquetas.pdf"'}
            )
        return {"url": result.url}
    except Exception as e:
        return handle_error(e)


@router.post("/print-url")
async def print_url(request: PrintLabelsRequest):
    """Direct ViPP download URL, without fetching the PDF."""
    return {"url": build_print_url(list(dict.fromkeys(request.codes)))}


@router.post("/export-tracking")
async def export_tracking(request: ExportTrackingRequest):
    """Hotmart tracking import CSV for orders with labels."""
    try:
        content = export_tracking_csv(request.orders)
        filename = f"rastreio_hotmart_{date.today().isoformat()}.csv"
        return Response(
            content=content.encode("utf-8"),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )
    except Exception as e:
        return handle_error(e)


# ===================
# VIPP CREDENTIALS
# ===================

@router.get("/vipp/credentials")
async def get_vipp_credentials():
    """Configured ViPP credentials, password masked."""
    return {
        "config": masked_config(),
        "is_production": settings.vipp_is_production,
    }


@router.post("/vipp/credentials")
async def check_vipp_credentials(request: Optional[VippCredentialsCheckRequest] = None):
    """
    Post a dummy shipment to check the credentials.

    This consumes a real label, so production credentials need the
    confirmation phrase.
    """
    try:
        confirmation = request.confirmation if request else None
        if settings.vipp_is_production and confirmation != settings.confirm_production_phrase:
            raise ConfirmationRequiredError("a credential check with production credentials", settings.confirm_production_phrase)
        return await run_in_threadpool(get_vipp_client().check_credentials)
    except Exception as e:
        return handle_error(e)
