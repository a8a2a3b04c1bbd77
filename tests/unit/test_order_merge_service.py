"""
Unit tests for OrderMergeService.

Run: pytest tests/unit/test_order_merge_service.py -v
"""

import pytest

from exceptions import (
    MergeConflictError,
    MergeMismatchError,
    MergeStrategyRequiredError,
    ValidationError,
)
from models.labels import LabelStatus, LabelStrategy
from services.order_merge_service import (
    OrderMergeService,
    merge_id_for,
    merge_key,
    mismatched_fields,
)
from tests.factories import OrderFactory


@pytest.fixture
def merge_service(store):
    return OrderMergeService(store=store)


class TestMergeKey:

    def test_case_accents_and_zip_format_ignored(self):
        a = OrderFactory.create(name="José Souza", address="Rua São Bento", zip="01310-100")
        b = OrderFactory.create(name="JOSE  SOUZA", address="rua sao bento", zip="01310100")

        assert merge_key(a) == merge_key(b)

    def test_mismatch_reported_in_field_order(self):
        a = OrderFactory.create()
        b = OrderFactory.create(zip="20040002", email="outra@example.com")

        assert mismatched_fields([a, b]) == ["email", "zip"]

    def test_merge_id_independent_of_order(self):
        assert merge_id_for(["HP2", "HP1"]) == merge_id_for(["HP1", "HP2"])
        assert merge_id_for(["HP1", "HP2"]).startswith("merge_")


class TestMerge:
    """Tests for OrderMergeService.merge()"""

    def test_merges_same_recipient(self, merge_service, mock_supabase):
        # Arrange
        a = OrderFactory.create(transaction_id="HP1", products=["Livro A"], total=50.0, sale_timestamp=100)
        b = OrderFactory.create(
            transaction_id="HP2", products=["Livro B"], total=47.5, sale_timestamp=200,
            sale_date="11/03/2025 09:00", phone=""
        )

        # Act
        merged = merge_service.merge([a, b])

        # Assert
        order = merged.order
        assert merged.id == merge_id_for(["HP1", "HP2"])
        assert order.transaction_id == merged.id
        assert order.is_merged is True
        assert order.merged_transaction_ids == ["HP1", "HP2"]
        assert order.products == ["Livro A", "Livro B"]
        assert order.total == 97.5
        assert order.sale_date == "11/03/2025 09:00"
        assert order.phone == "11987654321"
        assert order.label_status == LabelStatus.PENDING
        assert len(mock_supabase.rows("merged_orders")) == 1

    def test_different_address_rejected(self, merge_service):
        a = OrderFactory.create()
        b = OrderFactory.create(address="Rua Augusta")

        with pytest.raises(MergeMismatchError) as exc_info:
            merge_service.merge([a, b])

        assert exc_info.value.message.startswith("Endereços diferentes")
        assert exc_info.value.details["fields"] == ["address"]

    def test_different_name_rejected(self, merge_service):
        with pytest.raises(MergeMismatchError) as exc_info:
            merge_service.merge([OrderFactory.create(), OrderFactory.create(name="Ana Lima")])

        assert exc_info.value.message.startswith("Destinatários diferentes")

    def test_single_order_rejected(self, merge_service):
        with pytest.raises(ValidationError):
            merge_service.merge([OrderFactory.create()])

    def test_duplicate_member_rejected(self, merge_service):
        order = OrderFactory.create(transaction_id="HP1")

        with pytest.raises(ValidationError):
            merge_service.merge([order, order])

    def test_mixed_labels_need_strategy(self, merge_service):
        labeled = OrderFactory.create(label_codes=["AA123456789BR"])
        pending = OrderFactory.create()

        with pytest.raises(MergeStrategyRequiredError):
            merge_service.merge([labeled, pending])

    def test_inherit_keeps_codes(self, merge_service):
        labeled = OrderFactory.create(label_codes=["AA123456789BR"])
        pending = OrderFactory.create()

        merged = merge_service.merge([labeled, pending], LabelStrategy.INHERIT)

        assert merged.order.label_codes == ["AA123456789BR"]
        assert merged.order.label_status == LabelStatus.GENERATED

    def test_reset_starts_pending(self, merge_service):
        labeled = OrderFactory.create(label_codes=["AA123456789BR"])
        pending = OrderFactory.create()

        merged = merge_service.merge([labeled, pending], LabelStrategy.RESET)

        assert merged.order.label_codes == []
        assert merged.order.label_status == LabelStatus.PENDING
        assert merged.label_strategy == LabelStrategy.RESET

    def test_same_merge_twice_is_idempotent(self, merge_service, mock_supabase):
        a = OrderFactory.create(transaction_id="HP1")
        b = OrderFactory.create(transaction_id="HP2")

        first = merge_service.merge([a, b])
        second = merge_service.merge([b, a])

        assert first.id == second.id
        assert len(mock_supabase.rows("merged_orders")) == 1

    def test_member_of_other_merge_conflicts(self, merge_service):
        a = OrderFactory.create(transaction_id="HP1")
        b = OrderFactory.create(transaction_id="HP2")
        c = OrderFactory.create(transaction_id="HP3")
        merge_service.merge([a, b])

        with pytest.raises(MergeConflictError) as exc_info:
            merge_service.merge([b, c])

        assert exc_info.value.details["transaction_id"] == "HP2"

    def test_merged_row_cannot_be_merged_again(self, merge_service):
        merged = merge_service.merge([OrderFactory.create(), OrderFactory.create()])

        with pytest.raises(MergeConflictError):
            merge_service.merge([merged.order, OrderFactory.create()])


class TestUnmerge:
    """Tests for OrderMergeService.unmerge()"""

    def test_restores_members_exactly(self, merge_service, mock_supabase):
        labeled = OrderFactory.create(transaction_id="HP1", label_codes=["AA123456789BR"])
        pending = OrderFactory.create(transaction_id="HP2")
        merged = merge_service.merge([labeled, pending], LabelStrategy.INHERIT)

        restored = merge_service.unmerge(merged.order)

        assert [o.transaction_id for o in restored] == ["HP1", "HP2"]
        assert restored[0].label_codes == ["AA123456789BR"]
        assert restored[0].label_status == LabelStatus.GENERATED
        assert restored[1].label_status == LabelStatus.PENDING
        assert mock_supabase.rows("merged_orders") == []

    def test_without_stored_merge_members_come_back_pending(self, merge_service):
        order = OrderFactory.create(
            transaction_id="merge_x",
            label_codes=["AA123456789BR"],
            is_merged=True,
            merge_id="merge_x",
            merged_transaction_ids=["HP1", "HP2"],
        )

        restored = merge_service.unmerge(order)

        assert [o.transaction_id for o in restored] == ["HP1", "HP2"]
        assert all(o.label_status == LabelStatus.PENDING for o in restored)
        assert all(o.label_codes == [] for o in restored)

    def test_plain_order_rejected(self, merge_service):
        with pytest.raises(ValidationError):
            merge_service.unmerge(OrderFactory.create())


class TestApplySavedMerges:
    """Tests for OrderMergeService.apply_saved_merges()"""

    def test_reloaded_export_gets_merge_back(self, merge_service):
        a = OrderFactory.create(transaction_id="HP1")
        b = OrderFactory.create(transaction_id="HP2")
        c = OrderFactory.create(transaction_id="HP3", name="Outra Pessoa")
        merged = merge_service.merge([a, b])

        result, applied = merge_service.apply_saved_merges([a, c, b])

        assert applied == 1
        assert [o.transaction_id for o in result] == [merged.id, "HP3"]

    def test_recorded_label_progress_survives_reload(self, merge_service):
        a = OrderFactory.create(transaction_id="HP1")
        b = OrderFactory.create(transaction_id="HP2")
        merged = merge_service.merge([a, b]).order
        merged.label_codes = ["AA123456789BR"]
        merged.shipments_done = 1
        merged.label_status = LabelStatus.GENERATED
        merge_service.record_progress(merged)

        result, _ = merge_service.apply_saved_merges([a, b])

        assert result[0].label_codes == ["AA123456789BR"]
        assert result[0].label_status == LabelStatus.GENERATED

    def test_merge_with_missing_member_left_alone(self, merge_service):
        a = OrderFactory.create(transaction_id="HP1")
        b = OrderFactory.create(transaction_id="HP2")
        merge_service.merge([a, b])

        result, applied = merge_service.apply_saved_merges([a])

        assert applied == 0
        assert [o.transaction_id for o in result] == ["HP1"]

    def test_no_stored_merges(self, merge_service):
        orders = [OrderFactory.create(), OrderFactory.create()]

        assert merge_service.apply_saved_merges(orders) == (orders, 0)

    def test_reloaded_merge_blocks_second_merge_until_unmerged(self, merge_service):
        a = OrderFactory.create(transaction_id="HP1")
        b = OrderFactory.create(transaction_id="HP2")
        c = OrderFactory.create(transaction_id="HP3")
        merge_service.merge([a, b])

        reloaded, applied = merge_service.apply_saved_merges([a, b, c])
        merged_row = reloaded[0]

        assert applied == 1
        with pytest.raises(MergeConflictError):
            merge_service.merge([merged_row, c])
        with pytest.raises(MergeConflictError):
            merge_service.merge([a, c])

        restored = merge_service.unmerge(merged_row)
        again = merge_service.merge([restored[0], c])

        assert [o.transaction_id for o in restored] == ["HP1", "HP2"]
        assert again.transaction_ids == ["HP1", "HP3"]
