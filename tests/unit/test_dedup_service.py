"""
Unit tests for DedupService.

Run: pytest tests/unit/test_dedup_service.py -v
"""

import pytest

from exceptions import CrmApiError
from services.dedup_service import CREATED, EXISTS, SKIPPED, DedupContext, DedupService, lead_source
from services.record_normalizer import normalize_row
from tests.factories import FakeCrmClient, SaleRowFactory, import_mapping


def make_record(index=0, **overrides):
    return normalize_row(SaleRowFactory.create(**overrides), import_mapping(), index)


class TestProcessRecord:
    """Tests for DedupService.process_record()"""

    def test_new_lead_and_business_created(self):
        # Arrange
        crm = FakeCrmClient()
        service = DedupService(client=crm, platform="hotmart")
        record = make_record(**{"Transação": "HP1", "Email": "ana@example.com"})

        # Act
        result = service.process_record(record, "stage-1")

        # Assert
        assert result.status == CREATED
        assert result.message == "Business created: R$ 97.00"
        lead = crm.leads[result.lead_id]
        assert lead["email"] == "ana@example.com"
        assert lead["source"] == "CSV Hotmart"
        assert lead["address"]["zip"] == "01310100"
        assert crm.businesses[result.lead_id][0]["externalId"] == "HP1"

    def test_same_transaction_twice_creates_one_business(self):
        """Re-running a file never duplicates businesses."""
        crm = FakeCrmClient()
        record = make_record(**{"Transação": "HP1"})

        first = DedupService(client=crm).process_record(record, "stage-1")
        second = DedupService(client=crm).process_record(record, "stage-1")

        assert first.status == CREATED
        assert second.status == EXISTS
        assert crm.count("create_business") == 1
        assert crm.count("create_lead") == 1

    def test_missing_email_skipped_without_crm_calls(self):
        crm = FakeCrmClient()

        result = DedupService(client=crm).process_record(make_record(Email=""), "stage-1")

        assert result.status == SKIPPED
        assert crm.calls == []

    def test_missing_transaction_skipped(self):
        crm = FakeCrmClient()

        result = DedupService(client=crm).process_record(make_record(**{"Transação": ""}), "stage-1")

        assert result.status == SKIPPED

    def test_lead_cache_avoids_second_search(self):
        crm = FakeCrmClient()
        service = DedupService(client=crm, context=DedupContext())

        service.process_record(make_record(**{"Transação": "HP1", "Email": "ana@example.com"}), "s")
        service.process_record(make_record(**{"Transação": "HP2", "Email": "ana@example.com"}), "s")

        assert crm.count("search_leads") == 1
        assert crm.count("create_business") == 2


class TestExistingLeads:

    def test_empty_fields_filled_only(self):
        # Arrange
        crm = FakeCrmClient()
        crm.leads["lead-9"] = {"id": "lead-9", "email": "ana@example.com", "phone": "5511000000000", "tags": []}
        record = make_record(Email="ana@example.com")

        # Act
        result = DedupService(client=crm).process_record(record, "stage-1")

        # Assert
        assert result.lead_updated is True
        assert crm.leads["lead-9"]["phone"] == "5511000000000"
        assert crm.leads["lead-9"]["taxId"] == "12345678909"
        assert crm.leads["lead-9"]["address"]["city"] == "São Paulo"

    def test_complete_lead_not_patched(self):
        crm = FakeCrmClient()
        crm.leads["lead-9"] = {
            "id": "lead-9", "email": "ana@example.com", "phone": "1", "taxId": "2",
            "address": {"zip": "01310100"}, "tags": [],
        }

        result = DedupService(client=crm).process_record(make_record(Email="ana@example.com"), "s")

        assert result.lead_updated is False
        assert crm.count("patch_lead") == 0

    def test_conflict_recovered_by_email_in_error(self):
        crm = FakeCrmClient()
        crm.leads["lead-7"] = {"id": "lead-7", "email": "other@example.com", "tags": []}
        crm.fail_on["create_lead"] = CrmApiError(
            "API Error 400",
            status=400,
            body='{"code":"lead-with-same-contact-exists","existing":{"email":"other@example.com"}}',
        )

        result = DedupService(client=crm).process_record(make_record(Email="ana@example.com"), "s")

        assert result.lead_id == "lead-7"
        assert result.status == CREATED

    def test_other_crm_errors_propagate(self):
        crm = FakeCrmClient()
        crm.fail_on["create_business"] = CrmApiError("API Error 500", status=500)

        with pytest.raises(CrmApiError):
            DedupService(client=crm).process_record(make_record(), "s")


class TestTags:

    def test_product_tag_attached(self):
        crm = FakeCrmClient(tags={"Livro Físico": "tag-1"})

        result = DedupService(client=crm).process_record(make_record(), "s")

        assert crm.leads[result.lead_id]["tags"] == [{"id": "tag-1"}]

    def test_tag_failure_does_not_fail_record(self):
        crm = FakeCrmClient()
        crm.fail_on["search_tags"] = CrmApiError("API Error 503", status=503)

        result = DedupService(client=crm).process_record(make_record(), "s")

        assert result.status == CREATED

    def test_missing_tag_lookup_cached(self):
        crm = FakeCrmClient()
        service = DedupService(client=crm)

        service.process_record(make_record(), "s")
        service.process_record(make_record(), "s")

        assert crm.count("search_tags") == 1


def test_lead_source_defaults_to_setting():
    assert lead_source(None) == "CSV Platform"
    assert lead_source("kiwify") == "CSV Kiwify"
