"""
Mapping template API routes.

Named column mappings shared by every operator, re-checked against each
new upload before use.
"""

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import JSONResponse
import structlog

from exceptions import AppError
from models.mapping import (
    MappingTemplateCreate,
    MappingTemplateUpdate,
    MappingTemplateResponse,
    TemplateCompatibility,
)
from parsers.csv_parser import read_headers
from services.mapping_template_service import get_mapping_template_service

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/mapping-templates", tags=["Mapping Templates"])


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


@router.get("", response_model=list[MappingTemplateResponse])
async def list_templates():
    try:
        return get_mapping_template_service().get_all()
    except Exception as e:
        return handle_error(e)


@router.get("/{template_id}", response_model=MappingTemplateResponse)
async def get_template(template_id: str):
    try:
        return get_mapping_template_service().get(template_id)
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=MappingTemplateResponse, status_code=201)
async def create_template(data: MappingTemplateCreate):
    try:
        return get_mapping_template_service().create(data)
    except Exception as e:
        return handle_error(e)


@router.patch("/{template_id}", response_model=MappingTemplateResponse)
async def update_template(template_id: str, data: MappingTemplateUpdate):
    """Partial update; fields left out keep their value."""
    try:
        return get_mapping_template_service().update(template_id, data)
    except Exception as e:
        return handle_error(e)


@router.delete("/{template_id}", status_code=204)
async def delete_template(template_id: str):
    try:
        get_mapping_template_service().delete(template_id)
        return None
    except Exception as e:
        return handle_error(e)


@router.post("/check", response_model=list[TemplateCompatibility])
async def check_templates(file: UploadFile = File(...)):
    """Which saved templates fit the uploaded file's headers."""
    try:
        content = await file.read()
        return get_mapping_template_service().check_compatibility(read_headers(content))
    except Exception as e:
        return handle_error(e)
