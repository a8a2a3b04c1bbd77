"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
)
from models.mapping import (
    HEADER_FIELDS,
    REQUIRED_MAPPING_FIELDS,
    ColumnMapping,
    MappingTemplateCreate,
    MappingTemplateUpdate,
    MappingTemplateResponse,
    TemplateCompatibility,
    DetectColumnsResponse,
)
from models.import_job import (
    ImportJobStatus,
    ImportMode,
    is_valid_status_transition,
    RecordError,
    JobCounters,
    ImportJobResponse,
    ImportStartResponse,
    ImportEstimate,
    ImportLockStatus,
    ImportLockResponse,
)
from models.labels import (
    LabelStatus,
    LabelStrategy,
    label_status_for,
    Order,
    MergedOrder,
    LabelRecord,
    LabelEntry,
    MergeRequest,
    UnmergeRequest,
    GenerateLabelsRequest,
    GenerateLabelsResponse,
    OrderResult,
    PrintLabelsRequest,
    VippCredentialsCheckRequest,
    ExportTrackingRequest,
    OrderTableResponse,
)

__all__ = [
    "BaseSchema",
    "TimestampMixin",
    "HEADER_FIELDS",
    "REQUIRED_MAPPING_FIELDS",
    "ColumnMapping",
    "MappingTemplateCreate",
    "MappingTemplateUpdate",
    "MappingTemplateResponse",
    "TemplateCompatibility",
    "DetectColumnsResponse",
    "ImportJobStatus",
    "ImportMode",
    "is_valid_status_transition",
    "RecordError",
    "JobCounters",
    "ImportJobResponse",
    "ImportStartResponse",
    "ImportEstimate",
    "ImportLockStatus",
    "ImportLockResponse",
    "LabelStatus",
    "LabelStrategy",
    "label_status_for",
    "Order",
    "MergedOrder",
    "LabelRecord",
    "LabelEntry",
    "MergeRequest",
    "UnmergeRequest",
    "GenerateLabelsRequest",
    "GenerateLabelsResponse",
    "OrderResult",
    "PrintLabelsRequest",
    "VippCredentialsCheckRequest",
    "ExportTrackingRequest",
    "OrderTableResponse",
]
