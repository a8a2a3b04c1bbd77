"""
Mapping template service.

Named column mappings saved once and reused on every export from the
same platform. Templates are shared by the whole organization.
"""

import uuid
from typing import Optional, Sequence
import structlog

from exceptions import DocumentNotFoundError, IncompatibleTemplateError, MappingTemplateNotFoundError
from models.mapping import (
    MappingTemplateCreate,
    MappingTemplateResponse,
    MappingTemplateUpdate,
    TemplateCompatibility,
)
from services.column_mapper import missing_columns
from services.document_store import DocumentStore, MAPPING_TEMPLATES, get_document_store, utc_now

logger = structlog.get_logger(__name__)


class MappingTemplateService:
    """CRUD and header compatibility checks for mapping templates."""

    def __init__(self, store: Optional[DocumentStore] = None):
        self.store = store or get_document_store()
        self.table = MAPPING_TEMPLATES

    def get_all(self) -> list[MappingTemplateResponse]:
        """All templates, alphabetically."""
        docs = self.store.query(self.table, order_by="name")
        return [MappingTemplateResponse(**d) for d in docs]

    def get(self, template_id: str) -> MappingTemplateResponse:
        doc = self.store.get(self.table, template_id)
        if not doc:
            raise MappingTemplateNotFoundError(template_id)
        return MappingTemplateResponse(**doc)

    def create(self, data: MappingTemplateCreate) -> MappingTemplateResponse:
        """
        Save a new template.

        Args:
            data: Name, mapping and target stage

        Returns:
            Stored template
        """
        template_id = str(uuid.uuid4())
        doc = self.store.set(self.table, template_id, {
            "name": data.name,
            "mapping": data.mapping.model_dump(),
            "stage_id": data.stage_id,
            "icon": data.icon,
            "created_at": utc_now(),
        })
        logger.info("mapping_template_created", template_id=template_id, name=data.name)
        return MappingTemplateResponse(**doc)

    def update(self, template_id: str, data: MappingTemplateUpdate) -> MappingTemplateResponse:
        """Apply a partial update. An empty update returns the template unchanged."""
        changes = data.model_dump(exclude_unset=True)
        if "mapping" in changes and data.mapping is not None:
            changes["mapping"] = data.mapping.model_dump()
        if not changes:
            return self.get(template_id)

        try:
            doc = self.store.update(self.table, template_id, changes)
        except DocumentNotFoundError:
            raise MappingTemplateNotFoundError(template_id)

        logger.info("mapping_template_updated", template_id=template_id, fields=sorted(changes))
        return MappingTemplateResponse(**doc)

    def delete(self, template_id: str) -> None:
        if not self.store.delete(self.table, template_id):
            raise MappingTemplateNotFoundError(template_id)
        logger.info("mapping_template_deleted", template_id=template_id)

    # ===================
    # COMPATIBILITY
    # ===================

    def check_compatibility(self, headers: Sequence[str]) -> list[TemplateCompatibility]:
        """
        Re-check every template against a new file's headers.

        A template is compatible when every required key resolves and every
        header it maps exists in the file.
        """
        results = []
        for template in self.get_all():
            missing = missing_columns(template.mapping, headers)
            results.append(TemplateCompatibility(
                template_id=template.id,
                name=template.name,
                compatible=not missing,
                missing=missing,
            ))
        return results

    def apply(self, template_id: str, headers: Sequence[str]) -> MappingTemplateResponse:
        """
        Load a template for use with a file.

        Raises:
            MappingTemplateNotFoundError: Unknown template
            IncompatibleTemplateError: The file lacks headers the template maps
        """
        template = self.get(template_id)
        missing = missing_columns(template.mapping, headers)
        if missing:
            raise IncompatibleTemplateError(template.name, missing)
        return template


_service: Optional[MappingTemplateService] = None


def get_mapping_template_service() -> MappingTemplateService:
    global _service
    if _service is None:
        _service = MappingTemplateService()
    return _service
