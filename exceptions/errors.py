"""
Custom exception classes for the application.

Every error raised to the API layer is an AppError so routes can render
the standard error envelope.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_JOB_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


class DocumentNotFoundError(NotFoundError):
    """Document store row missing (update/get on a deleted document)."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(
            resource="Document",
            identifier=doc_id,
            code="DOCUMENT_NOT_FOUND"
        )
        self.collection = collection
        self.details["collection"] = collection


# ===================
# CSV / MAPPING ERRORS
# ===================

class CsvParseError(ValidationError):
    """CSV file could not be read."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="CSV_PARSE_ERROR",
            message=message,
            details=details
        )


class EmptyImportFileError(ValidationError):
    """CSV has no data rows."""

    def __init__(self, filename: Optional[str] = None):
        super().__init__(
            code="IMPORT_FILE_EMPTY",
            message="CSV file has no data rows",
            details={"filename": filename}
        )


class MissingMappingFieldsError(ValidationError):
    """Required mapping keys are unset or point at headers not in the file."""

    def __init__(self, missing: list[str], headers: Optional[list[str]] = None):
        super().__init__(
            code="MAPPING_MISSING_FIELDS",
            message=f"Column mapping is missing required fields: {', '.join(missing)}",
            details={"missing": missing, "headers": headers or []}
        )


class NoPaidRowsError(ValidationError):
    """No row matched the configured paid status value."""

    def __init__(self, status_filter: str, seen_statuses: list[str]):
        super().__init__(
            code="IMPORT_NO_PAID_ROWS",
            message=f'No rows with status "{status_filter}" found in file',
            details={"status_filter": status_filter, "seen_statuses": seen_statuses}
        )


class UnknownPlatformError(ValidationError):
    """Platform key has no preset and no custom mapping was sent."""

    def __init__(self, platform: str, valid: list[str]):
        super().__init__(
            code="IMPORT_UNKNOWN_PLATFORM",
            message=f"Unknown platform: {platform}",
            details={"provided": platform, "valid": valid}
        )


class MappingTemplateNotFoundError(NotFoundError):
    """Mapping template not found."""

    def __init__(self, template_id: str):
        super().__init__(
            resource="MappingTemplate",
            identifier=template_id,
            code="MAPPING_TEMPLATE_NOT_FOUND"
        )


class IncompatibleTemplateError(ValidationError):
    """Template references columns the uploaded file does not have."""

    def __init__(self, template_name: str, missing: list[str]):
        super().__init__(
            code="MAPPING_TEMPLATE_INCOMPATIBLE",
            message=f'Template "{template_name}" does not match this file, remap the columns',
            details={"template": template_name, "missing": missing}
        )


# ===================
# IMPORT JOB ERRORS
# ===================

class ImportJobNotFoundError(NotFoundError):
    """Import job not found."""

    def __init__(self, job_id: str):
        super().__init__(
            resource="ImportJob",
            identifier=job_id,
            code="IMPORT_JOB_NOT_FOUND"
        )


class JobAlreadyCompletedError(ConflictError):
    """Resume requested for a job whose offset already reached the end."""

    def __init__(self, job_id: str, last_index: int, total: int):
        super().__init__(
            code="IMPORT_JOB_ALREADY_COMPLETED",
            message="Import already completed, nothing to resume",
            details={"job_id": job_id, "last_index": last_index, "total": total}
        )


class JobNotResumableError(ConflictError):
    """Resume requested for a job in a state that cannot resume."""

    def __init__(self, job_id: str, status: str):
        super().__init__(
            code="IMPORT_JOB_NOT_RESUMABLE",
            message=f"Import job in status '{status}' cannot be resumed",
            details={"job_id": job_id, "status": status}
        )


class ImportLockedError(ConflictError):
    """Another import holds the import lock."""

    def __init__(self, lock: Optional[dict] = None):
        lock = lock or {}
        super().__init__(
            code="IMPORT_LOCKED",
            message="Another import is already running",
            details={
                "job_id": lock.get("job_id"),
                "filename": lock.get("filename"),
                "started_by": lock.get("started_by"),
                "estimated_unlock": lock.get("estimated_unlock"),
            }
        )


class ImportCancelledError(AppError):
    """Raised inside the processing loop when the job was cancelled or deleted."""

    def __init__(self, job_id: str, deleted: bool = False):
        super().__init__(
            code="IMPORT_JOB_DELETED" if deleted else "IMPORT_JOB_CANCELLED",
            message="Import job was deleted" if deleted else "Import job was cancelled",
            status_code=409,
            details={"job_id": job_id}
        )
        self.job_id = job_id
        self.deleted = deleted


class QueueUnavailableError(ExternalServiceError):
    """Work queue (Redis) is not configured or unreachable."""

    def __init__(self, message: str):
        super().__init__(service="queue", message=message)


# ===================
# EXTERNAL SERVICES
# ===================

LEAD_EXISTS_MARKER = "lead-with-same-contact-exists"


class CrmApiError(ExternalServiceError):
    """Datacrazy CRM call failed."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: str = "",
        endpoint: Optional[str] = None
    ):
        super().__init__(
            service="datacrazy",
            message=message,
            details={"status": status, "endpoint": endpoint, "body": body[:500]}
        )
        self.status = status
        self.body = body

    @property
    def is_lead_conflict(self) -> bool:
        """True when the CRM refused a create because the contact exists."""
        return LEAD_EXISTS_MARKER in (self.body or "") or LEAD_EXISTS_MARKER in self.message


class VippError(ExternalServiceError):
    """ViPP label service rejected or failed a request."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(service="vipp", message=message, details=details)


class LabelsNotReadyError(AppError):
    """ViPP does not know the requested label codes yet."""

    def __init__(self, codes: list[str]):
        super().__init__(
            code="VIPP_LABELS_NOT_FOUND",
            message="Labels not found in ViPP yet, wait a few minutes and try again",
            status_code=404,
            details={"codes": codes}
        )


class VippAuthError(AppError):
    """ViPP rejected the configured credentials."""

    def __init__(self):
        super().__init__(
            code="VIPP_AUTH_FAILED",
            message="Invalid ViPP user or password",
            status_code=401
        )


class NotificationError(ExternalServiceError):
    """Webhook, WhatsApp or spreadsheet delivery failed."""

    def __init__(self, channel: str, message: str, details: Optional[dict] = None):
        super().__init__(service=channel, message=message, details=details)


# ===================
# LABEL WORKSTATION ERRORS
# ===================

class MergeMismatchError(ValidationError):
    """Orders differ on recipient fields and cannot be merged."""

    def __init__(self, fields: list[str]):
        message = "Endereços diferentes" if {"address", "number", "zip"} & set(fields) else "Destinatários diferentes"
        super().__init__(
            code="MERGE_FIELDS_MISMATCH",
            message=f"{message}: {', '.join(fields)}",
            details={"fields": fields}
        )


class MergeStrategyRequiredError(ValidationError):
    """Members have mixed label states and no strategy was chosen."""

    def __init__(self, statuses: dict[str, str]):
        super().__init__(
            code="MERGE_STRATEGY_REQUIRED",
            message="Orders have mixed label status, choose 'inherit' or 'reset'",
            details={"statuses": statuses, "valid": ["inherit", "reset"]}
        )


class MergeConflictError(ConflictError):
    """A transaction already belongs to another active merge."""

    def __init__(self, transaction_id: str, merge_id: str):
        super().__init__(
            code="MERGE_TRANSACTION_TAKEN",
            message=f"Transaction {transaction_id} is already merged",
            details={"transaction_id": transaction_id, "merge_id": merge_id}
        )


class MergedOrderNotFoundError(NotFoundError):
    """Merged order not found."""

    def __init__(self, merge_id: str):
        super().__init__(
            resource="MergedOrder",
            identifier=merge_id,
            code="MERGED_ORDER_NOT_FOUND"
        )


class ConfirmationRequiredError(AppError):
    """Operator must type the confirmation phrase before this action."""

    def __init__(self, action: str, phrase: str):
        super().__init__(
            code="CONFIRMATION_REQUIRED",
            message=f'Type "{phrase}" to confirm {action}',
            status_code=400,
            details={"action": action, "phrase": phrase}
        )
