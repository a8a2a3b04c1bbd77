"""
Order merge service.

Several paid orders addressed to the same recipient can ship as one
package. A merge builds a synthetic order row from its members, keeps a
snapshot of every member so unmerge restores them exactly, and is stored
under an id derived from the sorted member transaction ids. Loading the
same export again finds the stored merge and re-applies it.
"""

import hashlib
from typing import Optional, Sequence
import structlog

from exceptions import (
    MergeConflictError,
    MergeMismatchError,
    MergeStrategyRequiredError,
    MergedOrderNotFoundError,
    ValidationError,
)
from models.labels import LabelStatus, LabelStrategy, MergedOrder, Order, label_status_for
from services.document_store import DocumentStore, MERGED_ORDERS, get_document_store, utc_now
from utils.text_utils import digits_only, normalize_key

logger = structlog.get_logger(__name__)

# Recipient fields compared when merging, in report order
MERGE_FIELDS = ["email", "name", "address", "number", "zip"]

# Filled from the first member that has a value
BEST_AVAILABLE_FIELDS = ["phone", "tax_id", "complement"]


def _field_key(order: Order, field: str) -> str:
    value = getattr(order, field, "")
    if field == "zip":
        return digits_only(value)
    return normalize_key(value)


def merge_key(order: Order) -> str:
    """Normalized (email, name, street, number, zip) identity of the recipient."""
    return "|".join(_field_key(order, f) for f in MERGE_FIELDS)


def mismatched_fields(orders: Sequence[Order]) -> list[str]:
    """Recipient fields on which any member differs from the first."""
    first = orders[0]
    return [
        field for field in MERGE_FIELDS
        if any(_field_key(o, field) != _field_key(first, field) for o in orders[1:])
    ]


def merge_id_for(transaction_ids: Sequence[str]) -> str:
    """Deterministic merge id: same members, same id."""
    joined = ",".join(sorted(transaction_ids))
    return "merge_" + hashlib.sha1(joined.encode("utf-8")).hexdigest()[:16]


def combine(
    members: Sequence[Order],
    merge_id: str,
    label_strategy: Optional[LabelStrategy] = None
) -> Order:
    """
    Build the synthetic order for a merge.

    The first member is the base; phone/tax id/complement come from the
    first member that has them; the most recent sale date wins. Label
    state follows the strategy (inherit keeps existing codes, reset
    starts pending).
    """
    base = members[0]
    merged = base.model_copy(deep=True)

    merged.transaction_id = merge_id
    merged.products = [p for m in members for p in m.products]
    merged.total = round(sum(m.total for m in members), 2)
    for field in BEST_AVAILABLE_FIELDS:
        setattr(merged, field, next((getattr(m, field) for m in members if getattr(m, field)), ""))

    latest = max(members, key=lambda m: m.sale_timestamp)
    merged.sale_date = latest.sale_date
    merged.sale_timestamp = latest.sale_timestamp

    labeled = [m for m in members if m.label_codes]
    if labeled and label_strategy != LabelStrategy.RESET:
        codes = []
        for member in labeled:
            codes.extend(c for c in member.label_codes if c not in codes)
        merged.label_codes = codes
        merged.shipments_total = max(m.shipments_total for m in labeled)
        merged.shipments_done = min(max(m.shipments_done for m in labeled), merged.shipments_total)
    else:
        merged.label_codes = []
        merged.shipments_total = max(m.shipments_total for m in members)
        merged.shipments_done = 0
    merged.label_status = label_status_for(merged.shipments_done, merged.shipments_total, bool(merged.label_codes))
    merged.last_error = None

    merged.is_merged = True
    merged.merge_id = merge_id
    merged.merged_transaction_ids = [m.transaction_id for m in members]
    return merged


def _pending_copy(order: Order, transaction_id: str) -> Order:
    restored = order.model_copy(deep=True)
    restored.transaction_id = transaction_id
    restored.label_codes = []
    restored.shipments_done = 0
    restored.shipments_total = 1
    restored.label_status = LabelStatus.PENDING
    restored.last_error = None
    restored.is_merged = False
    restored.merge_id = None
    restored.merged_transaction_ids = []
    return restored


class OrderMergeService:
    """Merge, unmerge and re-apply stored merges."""

    def __init__(self, store: Optional[DocumentStore] = None):
        self.store = store or get_document_store()
        self.table = MERGED_ORDERS

    def _to_model(self, doc: dict) -> MergedOrder:
        return MergedOrder(**doc)

    def get(self, merge_id: str) -> MergedOrder:
        doc = self.store.get(self.table, merge_id)
        if not doc:
            raise MergedOrderNotFoundError(merge_id)
        return self._to_model(doc)

    def find_for_transactions(self, transaction_ids: Sequence[str]) -> list[MergedOrder]:
        """Stored merges that contain any of transaction_ids."""
        docs = self.store.query_overlaps(self.table, "transaction_ids", list(transaction_ids))
        return [self._to_model(d) for d in docs]

    # ===================
    # MERGE
    # ===================

    def merge(
        self,
        orders: Sequence[Order],
        label_strategy: Optional[LabelStrategy] = None
    ) -> MergedOrder:
        """
        Merge two or more orders for the same recipient.

        Args:
            orders: Unmerged orders, first one is the field base
            label_strategy: Required when some members have labels and
                            others do not

        Returns:
            Stored merge with its synthetic order

        Raises:
            ValidationError: Fewer than two orders, or duplicates
            MergeMismatchError: Recipient fields differ
            MergeStrategyRequiredError: Mixed label states and no strategy
            MergeConflictError: A member already belongs to another merge
        """
        if len(orders) < 2:
            raise ValidationError("At least two orders are needed to merge")

        transaction_ids = [o.transaction_id for o in orders]
        if len(set(transaction_ids)) != len(transaction_ids):
            raise ValidationError("The same order was selected twice", details={"transaction_ids": transaction_ids})

        for order in orders:
            if order.is_merged:
                raise MergeConflictError(order.transaction_id, order.merge_id or "")

        differing = mismatched_fields(orders)
        if differing:
            logger.info("merge_rejected_mismatch", transaction_ids=transaction_ids, fields=differing)
            raise MergeMismatchError(differing)

        has_labels = {bool(o.label_codes) for o in orders}
        if len(has_labels) > 1 and label_strategy is None:
            raise MergeStrategyRequiredError({o.transaction_id: o.label_status.value for o in orders})

        merge_id = merge_id_for(transaction_ids)
        for existing in self.find_for_transactions(transaction_ids):
            if existing.id == merge_id:
                logger.info("merge_already_stored", merge_id=merge_id)
                return existing
            taken = next(t for t in transaction_ids if t in existing.transaction_ids)
            raise MergeConflictError(taken, existing.id)

        merged = combine(orders, merge_id, label_strategy)
        doc = self.store.set(self.table, merge_id, {
            "transaction_ids": transaction_ids,
            "label_strategy": label_strategy.value if label_strategy else None,
            "snapshots": {o.transaction_id: o.model_dump(mode="json") for o in orders},
            "order": merged.model_dump(mode="json"),
            "created_at": utc_now(),
        })

        logger.info(
            "orders_merged",
            merge_id=merge_id,
            members=len(orders),
            label_strategy=label_strategy.value if label_strategy else None,
            label_status=merged.label_status.value
        )
        return self._to_model(doc)

    def record_progress(self, order: Order) -> None:
        """Persist a merged order's new label state so re-imports see it."""
        if not order.is_merged or not order.merge_id:
            return
        self.store.set(self.table, order.merge_id, {"order": order.model_dump(mode="json")}, merge=True)

    # ===================
    # UNMERGE
    # ===================

    def unmerge(self, order: Order) -> list[Order]:
        """
        Split a merged order back into its members.

        Members come back from their snapshots with their own label state.
        Without a stored snapshot (merges saved before snapshots existed)
        a member is rebuilt from the merged row as pending with no label.

        Raises:
            ValidationError: The order is not a merge
        """
        if not order.is_merged or not order.merge_id:
            raise ValidationError("Order is not merged", details={"transaction_id": order.transaction_id})

        doc = self.store.get(self.table, order.merge_id)
        stored = self._to_model(doc) if doc else None
        snapshots = stored.snapshots if stored else {}
        members = (stored.transaction_ids if stored else None) or order.merged_transaction_ids

        restored = []
        for transaction_id in members:
            snapshot = snapshots.get(transaction_id)
            if snapshot is not None:
                restored.append(snapshot.model_copy(deep=True))
            else:
                logger.warning("unmerge_without_snapshot", merge_id=order.merge_id, transaction_id=transaction_id)
                restored.append(_pending_copy(order, transaction_id))

        if stored:
            self.store.delete(self.table, order.merge_id)

        logger.info("order_unmerged", merge_id=order.merge_id, members=len(restored))
        return restored

    # ===================
    # RE-IMPORT
    # ===================

    def apply_saved_merges(self, orders: list[Order]) -> tuple[list[Order], int]:
        """
        Re-apply stored merges whose members are all in orders.

        Merged rows take the position of their first member. Merges with
        members missing from this file are left alone.

        Returns:
            (orders with merges applied, number of merges applied)
        """
        by_id = {o.transaction_id: o for o in orders}
        saved = self.find_for_transactions(list(by_id))
        if not saved:
            return orders, 0

        replaced: dict[str, Order] = {}
        consumed: set[str] = set()
        for merge in saved:
            if not all(t in by_id for t in merge.transaction_ids):
                continue
            if consumed & set(merge.transaction_ids):
                continue

            members = [by_id[t] for t in merge.transaction_ids]
            merged = combine(members, merge.id, merge.label_strategy or LabelStrategy.INHERIT)
            if merge.order is not None:
                merged.label_codes = list(merge.order.label_codes)
                merged.shipments_total = merge.order.shipments_total
                merged.shipments_done = merge.order.shipments_done
                merged.label_status = merge.order.label_status
                merged.service_code = merge.order.service_code

            replaced[merge.transaction_ids[0]] = merged
            consumed.update(merge.transaction_ids)

        result = []
        for order in orders:
            if order.transaction_id in replaced:
                result.append(replaced[order.transaction_id])
            elif order.transaction_id not in consumed:
                result.append(order)

        logger.info("saved_merges_applied", count=len(replaced))
        return result, len(replaced)


_service: Optional[OrderMergeService] = None


def get_order_merge_service() -> OrderMergeService:
    global _service
    if _service is None:
        _service = OrderMergeService()
    return _service
