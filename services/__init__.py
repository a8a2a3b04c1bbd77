"""
Business logic services.

Each service handles one domain area.
"""

from services.document_store import DocumentStore, get_document_store
from services.rate_limiter import RateLimiter, get_rate_limiter
from services.dedup_service import DedupService, DedupContext, RowResult
from services.import_lock_service import ImportLockService, get_import_lock_service
from services.import_job_service import ImportJobService, get_import_job_service
from services.import_queue_service import ImportQueueService, get_import_queue_service
from services.mapping_template_service import MappingTemplateService, get_mapping_template_service
from services.order_merge_service import OrderMergeService, get_order_merge_service
from services.notification_service import NotificationService, get_notification_service
from services.label_service import LabelService, get_label_service

__all__ = [
    "DocumentStore",
    "get_document_store",
    "RateLimiter",
    "get_rate_limiter",
    "DedupService",
    "DedupContext",
    "RowResult",
    "ImportLockService",
    "get_import_lock_service",
    "ImportJobService",
    "get_import_job_service",
    "ImportQueueService",
    "get_import_queue_service",
    "MappingTemplateService",
    "get_mapping_template_service",
    "OrderMergeService",
    "get_order_merge_service",
    "NotificationService",
    "get_notification_service",
    "LabelService",
    "get_label_service",
]
