"""
Shipping label workstation schemas.

Orders are built from an imported Hotmart sales export, merged per
recipient when the operator asks, and turned into labels through ViPP.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class LabelStatus(str, Enum):
    """Label progress of one order."""
    PENDING = "pending"
    PARTIAL = "partial"
    GENERATED = "generated"
    ERROR = "error"


class LabelStrategy(str, Enum):
    """What a merge does with labels already generated for some members."""
    INHERIT = "inherit"
    RESET = "reset"


def label_status_for(done: int, total: int, has_labels: bool) -> LabelStatus:
    """
    Derive label status from shipment counters.

    generated iff every planned shipment has a label, partial iff some do.
    """
    if done >= total and has_labels:
        return LabelStatus.GENERATED
    if 0 < done < total:
        return LabelStatus.PARTIAL
    return LabelStatus.PENDING


class Order(BaseSchema):
    """One candidate shipment (a paid sale of a physical product)."""

    transaction_id: str
    products: list[str] = Field(default_factory=list)
    name: str = ""
    email: str = ""
    phone: str = ""
    tax_id: str = ""
    zip: str = ""
    address: str = ""
    number: str = ""
    complement: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    country: str = "Brasil"
    sale_date: str = ""
    sale_timestamp: int = 0
    total: float = 0.0
    service_code: Optional[str] = None

    shipments_total: int = Field(default=1, ge=1)
    shipments_done: int = Field(default=0, ge=0)
    label_status: LabelStatus = LabelStatus.PENDING
    label_codes: list[str] = Field(default_factory=list)
    last_error: Optional[str] = None

    is_merged: bool = False
    merge_id: Optional[str] = None
    merged_transaction_ids: list[str] = Field(default_factory=list)

    @property
    def product(self) -> str:
        return " | ".join(self.products)

    @property
    def source_transaction_ids(self) -> list[str]:
        """Original transaction ids this row stands for."""
        return self.merged_transaction_ids if self.is_merged else [self.transaction_id]


class MergedOrder(BaseSchema):
    """
    Persisted merge of two or more orders for one recipient.

    snapshots keeps every member's pre-merge state so unmerge restores
    label status and codes exactly.
    """

    id: str
    transaction_ids: list[str]
    label_strategy: Optional[LabelStrategy] = None
    snapshots: dict[str, Order] = Field(default_factory=dict)
    order: Optional[Order] = None
    created_at: Optional[datetime] = None


class LabelRecord(BaseSchema):
    """Append-only record of one generated label for one transaction."""

    transaction_id: str
    label_code: str
    recipient_name: str = ""
    shipment_index: int = 1
    shipment_total: int = 1
    merge_id: Optional[str] = None
    merged_transaction_ids: list[str] = Field(default_factory=list)
    service_code: Optional[str] = None
    is_test: bool = False
    created_at: Optional[datetime] = None


# ===================
# REQUESTS / RESPONSES
# ===================

class MergeRequest(BaseSchema):
    orders: list[Order] = Field(..., min_length=2)
    label_strategy: Optional[LabelStrategy] = None


class UnmergeRequest(BaseSchema):
    order: Order


class GenerateLabelsRequest(BaseSchema):
    """Generate labels for the selected orders."""

    orders: list[Order] = Field(..., min_length=1)
    service_code: Optional[str] = None
    batch_id: Optional[str] = Field(
        None,
        description="Client-chosen id used to cancel the batch while it runs"
    )
    confirmation: Optional[str] = Field(
        None,
        description="Typed phrase required with production ViPP credentials"
    )
    client_confirmation: Optional[str] = Field(
        None,
        description="Typed phrase required to notify real clients"
    )
    notify_clients: Optional[bool] = None
    send_whatsapp: bool = False


class OrderResult(BaseSchema):
    transaction_id: str
    status: LabelStatus
    label_code: Optional[str] = None
    error: Optional[str] = None


class GenerateLabelsResponse(BaseSchema):
    batch_id: Optional[str] = None
    orders: list[Order]
    results: list[OrderResult]
    generated: int
    failed: int
    skipped: int
    new_codes: list[str] = Field(default_factory=list)
    all_codes: list[str] = Field(default_factory=list)
    pdf_url: Optional[str] = None
    cancelled: bool = False
    is_test: bool = False
    notifications_scheduled: bool = Field(
        False,
        description="Webhook, WhatsApp and sheet log queued to run after the response"
    )


class PrintLabelsRequest(BaseSchema):
    codes: list[str] = Field(..., min_length=1)


class VippCredentialsCheckRequest(BaseSchema):
    confirmation: Optional[str] = Field(
        None,
        description="Typed phrase required with production ViPP credentials"
    )


class ExportTrackingRequest(BaseSchema):
    orders: list[Order] = Field(..., min_length=1)


class OrderTableResponse(BaseSchema):
    orders: list[Order]
    total: int
    skipped_rows: int = 0
    merges_applied: int = 0


class LabelEntry(BaseSchema):
    """One label code as reported to the webhook, WhatsApp and the sheet log."""

    code: str
    order: Order
    is_new: bool = True
    shipment_index: int = 1
    shipment_total: int = 1
    is_test: bool = False
    generated_at: Optional[datetime] = None
