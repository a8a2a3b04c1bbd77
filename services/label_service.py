"""
Shipping label workstation.

Builds the order table from a Hotmart sales export (physical products
with a paid status), joins it with labels generated earlier and stored
merges, generates labels through ViPP one order at a time and exports
the tracking CSV Hotmart re-imports.
"""

import time
from io import StringIO
from typing import Any, Callable, Optional, Sequence
import structlog

import pandas as pd

from config import settings
from config.platforms import (
    LABEL_COLUMNS,
    LABEL_PAID_STATUSES,
    TRACKING_CARRIER,
    TRACKING_CSV_HEADER,
    TRACKING_STATUS,
)
from exceptions import ConfirmationRequiredError
from integrations.vipp import PrintResult, VippClient, build_print_url, get_vipp_client
from models.labels import (
    GenerateLabelsRequest,
    GenerateLabelsResponse,
    LabelEntry,
    LabelStatus,
    Order,
    OrderResult,
    OrderTableResponse,
    label_status_for,
)
from parsers.csv_parser import CsvSource, iter_rows
from services.cancellation import CancellationToken
from services.document_store import DocumentStore, LABELS, get_document_store, utc_now
from services.notification_service import NotificationService, get_notification_service, tracking_link
from services.order_merge_service import OrderMergeService, get_order_merge_service
from services.record_normalizer import is_physical_product, parse_flexible_date, parse_total

logger = structlog.get_logger(__name__)

TRACKING_COLUMNS = TRACKING_CSV_HEADER.split(",")

# Runs a notification task: FastAPI BackgroundTasks.add_task or run_now
Dispatch = Callable[..., Any]


def run_now(func: Callable[..., Any], *args, **kwargs) -> None:
    func(*args, **kwargs)


# ===================
# ORDER TABLE
# ===================

def row_to_order(row: dict) -> Order:
    """Order from one Hotmart export row."""
    def cell(key: str) -> str:
        return row.get(LABEL_COLUMNS[key], "") or ""

    sale_date = cell("sale_date")
    return Order(
        transaction_id=cell("transaction_id"),
        products=[cell("product")] if cell("product") else [],
        name=cell("name"),
        email=cell("email"),
        phone=cell("phone"),
        tax_id=cell("tax_id"),
        zip=cell("zip"),
        address=cell("address"),
        number=cell("number"),
        complement=cell("complement"),
        neighborhood=cell("neighborhood"),
        city=cell("city"),
        state=cell("state"),
        country=cell("country") or "Brasil",
        sale_date=sale_date,
        sale_timestamp=parse_flexible_date(sale_date),
        total=parse_total(cell("total")),
        service_code=settings.vipp_default_service,
    )


def is_label_candidate(row: dict) -> bool:
    """Physical product with an approved/complete status."""
    return (
        is_physical_product(row.get(LABEL_COLUMNS["product"], ""))
        and row.get(LABEL_COLUMNS["status"], "") in LABEL_PAID_STATUSES
    )


def apply_label_records(order: Order, records: Sequence[dict]) -> Order:
    """
    Set an order's label state from its stored label records.

    One record per generated shipment; codes keep generation order.
    """
    if not records:
        return order

    ordered = sorted(records, key=lambda r: str(r.get("created_at") or ""))
    codes = []
    for record in ordered:
        code = record.get("label_code")
        if code and code not in codes:
            codes.append(code)

    planned = max([order.shipments_total] + [int(r.get("shipment_total") or 1) for r in ordered])
    order.label_codes = codes
    order.shipments_done = len(codes)
    order.shipments_total = max(planned, len(codes))
    order.label_status = label_status_for(order.shipments_done, order.shipments_total, bool(codes))
    return order


def build_order_table(
    rows: Sequence[dict],
    existing_labels: dict[str, list[dict]],
    merge_service: Optional[OrderMergeService] = None
) -> OrderTableResponse:
    """
    Join parsed export rows with stored labels and merges.

    Args:
        rows: Raw export rows ({header: value})
        existing_labels: Label records grouped by transaction id
        merge_service: Re-applies stored merges (skipped when None)
    """
    orders = []
    skipped = 0
    for row in rows:
        if not is_label_candidate(row):
            skipped += 1
            continue
        order = row_to_order(row)
        if not order.transaction_id:
            skipped += 1
            continue
        orders.append(apply_label_records(order, existing_labels.get(order.transaction_id, [])))

    merges_applied = 0
    if merge_service is not None and orders:
        orders, merges_applied = merge_service.apply_saved_merges(orders)

    return OrderTableResponse(
        orders=orders,
        total=len(orders),
        skipped_rows=skipped,
        merges_applied=merges_applied,
    )


# ===================
# TRACKING CSV
# ===================

def export_tracking_csv(orders: Sequence[Order]) -> str:
    """
    Tracking CSV for Hotmart's importer.

    UTF-8 BOM, fixed header, one row per (label code, original
    transaction id). Orders without labels are left out.
    """
    rows = []
    for order in orders:
        purchase_date = order.sale_date.split(" ")[0] if order.sale_date else ""
        for code in order.label_codes:
            for transaction_id in order.source_transaction_ids:
                rows.append([
                    transaction_id,
                    purchase_date,
                    order.product,
                    TRACKING_CARRIER,
                    code,
                    TRACKING_STATUS,
                    tracking_link(code),
                ])

    buffer = StringIO()
    pd.DataFrame(rows, columns=TRACKING_COLUMNS).to_csv(buffer, index=False, lineterminator="\n")
    return "\ufeff" + buffer.getvalue()


class LabelService:
    """
    Label generation and the order table.

    Args:
        store: Document store for label records
        vipp: ViPP client
        merge_service: Merge persistence
        notifications: Batch notification fan-out
        sleep: Sleep function for the pause between label requests
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        vipp: Optional[VippClient] = None,
        merge_service: Optional[OrderMergeService] = None,
        notifications: Optional[NotificationService] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store or get_document_store()
        self.vipp = vipp or get_vipp_client()
        self.merge_service = merge_service or get_order_merge_service()
        self.notifications = notifications or get_notification_service()
        self.table = LABELS
        self._sleep = sleep

    def existing_labels(self, transaction_ids: Sequence[str]) -> dict[str, list[dict]]:
        """Stored label records grouped by transaction id."""
        grouped: dict[str, list[dict]] = {}
        ids = list(dict.fromkeys(transaction_ids))
        for start in range(0, len(ids), 100):
            for record in self.store.query_in(self.table, "transaction_id", ids[start:start + 100]):
                grouped.setdefault(record["transaction_id"], []).append(record)
        return grouped

    def load_orders(self, source: CsvSource) -> OrderTableResponse:
        """Order table for an uploaded export."""
        rows = list(iter_rows(source))
        candidate_ids = [
            row.get(LABEL_COLUMNS["transaction_id"], "")
            for row in rows
            if is_label_candidate(row)
        ]
        table = build_order_table(rows, self.existing_labels(candidate_ids), self.merge_service)
        logger.info(
            "label_orders_loaded",
            rows=len(rows),
            orders=table.total,
            skipped=table.skipped_rows,
            merges_applied=table.merges_applied
        )
        return table

    # ===================
    # GENERATION
    # ===================

    def check_confirmation(self, request: GenerateLabelsRequest) -> bool:
        """
        Enforce the typed confirmation phrases.

        Returns:
            Effective client notification flag

        Raises:
            ConfirmationRequiredError: Phrase missing or wrong
        """
        if settings.vipp_is_production and request.confirmation != settings.confirm_production_phrase:
            raise ConfirmationRequiredError("label generation with production credentials", settings.confirm_production_phrase)

        notify = settings.notify_clients if request.notify_clients is None else request.notify_clients
        if notify and not settings.client_phone_override and request.client_confirmation != settings.confirm_clients_phrase:
            raise ConfirmationRequiredError("sending notifications to real clients", settings.confirm_clients_phrase)
        return notify

    def generate_labels(
        self,
        request: GenerateLabelsRequest,
        token: Optional[CancellationToken] = None,
        dispatch: Optional[Dispatch] = None
    ) -> GenerateLabelsResponse:
        """
        Generate labels for the selected orders, one at a time.

        Orders already generated are skipped. A failure marks that order
        as error and the batch continues. The cancel token is checked
        before each request, never mid-request.

        Notifications are handed to dispatch once the batch is done. The
        route passes BackgroundTasks.add_task so they run after the
        response; without dispatch they run inline.

        Raises:
            ConfirmationRequiredError: Confirmation phrase missing
        """
        notify = self.check_confirmation(request)
        token = token or CancellationToken(request.batch_id or "")
        is_test = not settings.vipp_is_production
        default_service = request.service_code or settings.vipp_default_service

        orders = [o.model_copy(deep=True) for o in request.orders]
        results: list[OrderResult] = []
        new_entries: list[LabelEntry] = []
        generated = failed = skipped = 0
        cancelled = False
        requested = False

        logger.info("label_batch_started", batch_id=request.batch_id, orders=len(orders), is_test=is_test)

        for order in orders:
            if order.label_status == LabelStatus.GENERATED:
                skipped += 1
                continue
            if token.cancelled:
                cancelled = True
                logger.info("label_batch_cancelled", batch_id=request.batch_id, generated=generated)
                break

            if requested:
                self._sleep(settings.label_request_delay_seconds)
            requested = True

            service_code = request.service_code or order.service_code or default_service
            try:
                code = self.vipp.post_object(order, service_code)
            except Exception as e:
                failed += 1
                order.label_status = LabelStatus.ERROR
                order.last_error = str(e)
                results.append(OrderResult(
                    transaction_id=order.transaction_id,
                    status=LabelStatus.ERROR,
                    error=str(e),
                ))
                logger.warning("label_generation_failed", transaction_id=order.transaction_id, error=str(e))
                continue

            generated += 1
            order.service_code = service_code
            order.label_codes.append(code)
            order.shipments_done = min(order.shipments_done + 1, order.shipments_total)
            order.label_status = label_status_for(order.shipments_done, order.shipments_total, True)
            order.last_error = None

            self._save_label(order, code, service_code, is_test)
            new_entries.append(LabelEntry(
                code=code,
                order=order.model_copy(deep=True),
                is_new=True,
                shipment_index=order.shipments_done,
                shipment_total=order.shipments_total,
                is_test=is_test,
                generated_at=utc_now(),
            ))
            results.append(OrderResult(
                transaction_id=order.transaction_id,
                status=order.label_status,
                label_code=code,
            ))

        new_codes = [e.code for e in new_entries]
        all_entries = list(new_entries)
        for order in orders:
            for code in order.label_codes:
                if code not in new_codes:
                    all_entries.append(LabelEntry(code=code, order=order, is_new=False, is_test=is_test))
        all_codes = [e.code for e in all_entries]

        if all_entries:
            (dispatch or run_now)(
                self.notifications.notify_batch,
                new_entries,
                all_entries,
                notify_clients=notify,
                send_whatsapp=request.send_whatsapp,
                batch_id=request.batch_id,
            )

        logger.info(
            "label_batch_finished",
            batch_id=request.batch_id,
            generated=generated,
            failed=failed,
            skipped=skipped,
            cancelled=cancelled
        )
        return GenerateLabelsResponse(
            batch_id=request.batch_id,
            orders=orders,
            results=results,
            generated=generated,
            failed=failed,
            skipped=skipped,
            new_codes=new_codes,
            all_codes=all_codes,
            pdf_url=build_print_url(all_codes) if all_codes else None,
            cancelled=cancelled,
            is_test=is_test,
            notifications_scheduled=bool(all_entries),
        )

    def _save_label(self, order: Order, code: str, service_code: str, is_test: bool) -> None:
        """Append one label record per original transaction."""
        try:
            for transaction_id in order.source_transaction_ids:
                self.store.insert(self.table, {
                    "transaction_id": transaction_id,
                    "label_code": code,
                    "recipient_name": order.name,
                    "shipment_index": order.shipments_done,
                    "shipment_total": order.shipments_total,
                    "merge_id": order.merge_id,
                    "merged_transaction_ids": order.merged_transaction_ids,
                    "service_code": service_code,
                    "is_test": is_test,
                    "created_at": utc_now(),
                })
            self.merge_service.record_progress(order)
        except Exception as e:
            order.last_error = f"Label {code} generated but not saved: {e}"
            logger.error("label_record_save_failed", transaction_id=order.transaction_id, code=code, error=str(e))

    def print_labels(self, codes: Sequence[str]) -> PrintResult:
        """Consolidated PDF (or its URL) for label codes."""
        return self.vipp.print_labels(list(dict.fromkeys(codes)))


_service: Optional[LabelService] = None


def get_label_service() -> LabelService:
    global _service
    if _service is None:
        _service = LabelService()
    return _service
