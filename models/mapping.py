"""
Column mapping and mapping template schemas.
"""

from pydantic import AliasChoices, Field, field_validator
from typing import Optional
from datetime import datetime

from models.base import BaseSchema, TimestampMixin


# Logical keys that point at a CSV header
HEADER_FIELDS = [
    "email",
    "name",
    "phone",
    "tax_id",
    "product",
    "transaction_id",
    "total",
    "status",
    "zip",
    "address",
    "number",
    "complement",
    "neighborhood",
    "city",
    "state",
]

# Keys that must resolve before an import may start. status_filter is
# a value, not a header, so validate() only checks that it is set.
REQUIRED_MAPPING_FIELDS = [
    "email",
    "name",
    "transaction_id",
    "status",
    "status_filter",
]


class ColumnMapping(BaseSchema):
    """
    Logical field -> CSV header mapping.

    status_filter holds the value of the status column that marks a sale
    as paid (e.g. "Aprovado"); every other field names a header.
    """

    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    product: Optional[str] = None
    transaction_id: Optional[str] = None
    total: Optional[str] = None
    status: Optional[str] = None
    status_filter: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("status_filter", "status_paid"),
        description="Status value that marks a paid sale"
    )
    zip: Optional[str] = None
    address: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def header_for(self, key: str) -> Optional[str]:
        return getattr(self, key, None)

    def mapped_headers(self) -> dict[str, str]:
        """Return {logical_key: header} for every header field that is set."""
        return {
            key: getattr(self, key)
            for key in HEADER_FIELDS
            if getattr(self, key)
        }


# ===================
# MAPPING TEMPLATE SCHEMAS
# ===================

class MappingTemplateCreate(BaseSchema):
    """Create a named mapping shared by the whole organization."""

    name: str = Field(..., min_length=1, max_length=100)
    mapping: ColumnMapping
    stage_id: str = Field(..., min_length=1, description="CRM stage for new businesses")
    icon: Optional[str] = Field(None, max_length=200)


class MappingTemplateUpdate(BaseSchema):
    """Partial update; only provided fields change."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    mapping: Optional[ColumnMapping] = None
    stage_id: Optional[str] = Field(None, min_length=1)
    icon: Optional[str] = Field(None, max_length=200)


class MappingTemplateResponse(BaseSchema, TimestampMixin):
    """Mapping template as stored."""

    id: str
    name: str
    mapping: ColumnMapping
    stage_id: str
    icon: Optional[str] = None


class TemplateCompatibility(BaseSchema):
    """Result of re-checking a template against a new file's headers."""

    template_id: str
    name: str
    compatible: bool
    missing: list[str] = Field(default_factory=list)


# ===================
# COLUMN DETECTION
# ===================

class DetectColumnsResponse(BaseSchema):
    """Headers read from an uploaded file plus the auto-detected mapping."""

    filename: Optional[str] = None
    headers: list[str]
    mapping: ColumnMapping
    missing: list[str] = Field(default_factory=list)
    templates: list[TemplateCompatibility] = Field(default_factory=list)
    detected_at: datetime = Field(default_factory=datetime.utcnow)
