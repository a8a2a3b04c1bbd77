"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,
    DocumentNotFoundError,

    # CSV / mapping
    CsvParseError,
    EmptyImportFileError,
    MissingMappingFieldsError,
    NoPaidRowsError,
    UnknownPlatformError,
    MappingTemplateNotFoundError,
    IncompatibleTemplateError,

    # Import jobs
    ImportJobNotFoundError,
    JobAlreadyCompletedError,
    JobNotResumableError,
    ImportLockedError,
    ImportCancelledError,
    QueueUnavailableError,

    # External services
    LEAD_EXISTS_MARKER,
    CrmApiError,
    VippError,
    LabelsNotReadyError,
    VippAuthError,
    NotificationError,

    # Label workstation
    MergeMismatchError,
    MergeStrategyRequiredError,
    MergeConflictError,
    MergedOrderNotFoundError,
    ConfirmationRequiredError,
)

__all__ = [
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",
    "DocumentNotFoundError",
    "CsvParseError",
    "EmptyImportFileError",
    "MissingMappingFieldsError",
    "NoPaidRowsError",
    "UnknownPlatformError",
    "MappingTemplateNotFoundError",
    "IncompatibleTemplateError",
    "ImportJobNotFoundError",
    "JobAlreadyCompletedError",
    "JobNotResumableError",
    "ImportLockedError",
    "ImportCancelledError",
    "QueueUnavailableError",
    "LEAD_EXISTS_MARKER",
    "CrmApiError",
    "VippError",
    "LabelsNotReadyError",
    "VippAuthError",
    "NotificationError",
    "MergeMismatchError",
    "MergeStrategyRequiredError",
    "MergeConflictError",
    "MergedOrderNotFoundError",
    "ConfirmationRequiredError",
]
