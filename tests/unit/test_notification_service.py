"""
Unit tests for label notifications.

Run: pytest tests/unit/test_notification_service.py -v
"""

import pytest
from unittest.mock import patch

from config import settings
from exceptions import NotificationError
from models.labels import LabelEntry
from services.notification_service import NotificationService, build_webhook_payload, client_phone
from tests.factories import OrderFactory


def entry(code, is_new=True, **order_overrides):
    return LabelEntry(code=code, order=OrderFactory.create(**order_overrides), is_new=is_new)


@pytest.fixture
def notification_service(no_sleep):
    return NotificationService(sleep=no_sleep)


@pytest.fixture
def admin_phone():
    with patch.object(settings, "admin_phone", "11900001111"):
        yield


class TestClientPhone:

    def test_order_phone_normalized(self):
        assert client_phone(entry("AA1BR", phone="(11) 98765-4321")) == "5511987654321"

    def test_override_wins(self):
        with patch.object(settings, "client_phone_override", "21 99999-8888"):
            assert client_phone(entry("AA1BR")) == "5521999998888"

    def test_invalid_phone(self):
        assert client_phone(entry("AA1BR", phone="12345")) is None


class TestWebhookPayload:

    def test_admin_sees_every_label(self):
        new = [entry("AA2BR")]
        old = entry("AA1BR", is_new=False)

        payload = build_webhook_payload(new, new + [old], notify_clients=False, admin_phone="5511900001111")

        assert payload["totalNovas"] == 1
        assert payload["totalAdmin"] == 2
        assert payload["etiquetas"] == []
        assert [e["isNova"] for e in payload["todasEtiquetas"]] == [True, False]
        assert payload["resumo"]["enviarClienteDesabilitado"] is True
        assert "AA1BR" in payload["mensagemAdmin"]

    def test_client_entries_need_valid_phone(self):
        new = [entry("AA1BR"), entry("AA2BR", phone="")]

        payload = build_webhook_payload(new, new, notify_clients=True, admin_phone="5511900001111")

        assert [e["codigo"] for e in payload["etiquetas"]] == ["AA1BR"]
        assert payload["etiquetas"][0]["clienteTelefone"] == "5511987654321"
        assert payload["resumo"]["semTelefone"] == 1

    def test_client_entry_keys(self):
        payload = build_webhook_payload([entry("AA1BR")], [entry("AA1BR")], True, "5511900001111")

        assert set(payload["etiquetas"][0]) == {
            "codigo", "pdfUrl", "transactionId", "produto", "clienteNome", "clienteEmail",
            "clienteLogradouro", "clienteNumero", "clienteComplemento", "clienteBairro",
            "clienteCidade", "clienteUf", "clienteCep", "clienteTelefone",
        }


class TestNotifyBatch:
    """Tests for NotificationService.notify_batch()"""

    def test_every_channel_runs(self, notification_service, admin_phone):
        labels = [entry("AA1BR"), entry("AA2BR")]

        with patch("integrations.n8n.post_webhook", return_value=True) as webhook, \
                patch("integrations.evolution.send_text", return_value=True) as whatsapp, \
                patch("integrations.google_sheets.append_rows", return_value=2) as sheets:
            report = notification_service.notify_batch(labels, labels, notify_clients=True, send_whatsapp=True)

        assert report.webhook_sent is True
        assert report.whatsapp_sent == 2
        assert report.sheet_rows == 2
        assert webhook.call_args[0][0]["adminPhone"] == "5511900001111"
        assert whatsapp.call_args_list[0][0][0] == "5511987654321"
        assert len(sheets.call_args[0][0]) == 2

    def test_whatsapp_needs_client_notification(self, notification_service, admin_phone):
        labels = [entry("AA1BR")]

        with patch("integrations.n8n.post_webhook", return_value=True), \
                patch("integrations.evolution.send_text") as whatsapp, \
                patch("integrations.google_sheets.append_rows", return_value=1):
            notification_service.notify_batch(labels, labels, notify_clients=False, send_whatsapp=True)

        whatsapp.assert_not_called()

    def test_missing_admin_phone_skips_webhook(self, notification_service):
        labels = [entry("AA1BR")]

        with patch.object(settings, "admin_phone", None), \
                patch("integrations.n8n.post_webhook") as webhook, \
                patch("integrations.google_sheets.append_rows", return_value=1):
            report = notification_service.notify_batch(labels, labels)

        webhook.assert_not_called()
        assert report.webhook_sent is False
        assert report.sheet_rows == 1

    def test_failing_channel_does_not_block_others(self, notification_service, admin_phone):
        labels = [entry("AA1BR")]

        with patch("integrations.n8n.post_webhook", side_effect=NotificationError("n8n", "Webhook answered 500")), \
                patch("integrations.google_sheets.append_rows", return_value=1):
            report = notification_service.notify_batch(labels, labels)

        assert report.webhook_sent is False
        assert report.sheet_rows == 1
        assert report.errors[0].startswith("webhook:")

    def test_whatsapp_failure_counted(self, notification_service, admin_phone, no_sleep):
        labels = [entry("AA1BR"), entry("AA2BR")]

        with patch("integrations.n8n.post_webhook", return_value=True), \
                patch("integrations.evolution.send_text",
                      side_effect=[NotificationError("evolution", "down"), True]), \
                patch("integrations.google_sheets.append_rows", return_value=2):
            report = notification_service.notify_batch(labels, labels, notify_clients=True, send_whatsapp=True)

        assert report.whatsapp_failed == 1
        assert report.whatsapp_sent == 1
        assert len(no_sleep.calls) == 1

    def test_sheet_logs_new_labels_only(self, notification_service, admin_phone):
        new = [entry("AA2BR")]
        old = entry("AA1BR", is_new=False)

        with patch("integrations.n8n.post_webhook", return_value=True), \
                patch("integrations.google_sheets.append_rows", return_value=1) as sheets:
            notification_service.notify_batch(new, new + [old])

        rows = sheets.call_args[0][0]
        assert [r[0] for r in rows] == ["AA2BR"]

    def test_empty_batch_does_nothing(self, notification_service):
        with patch("integrations.n8n.post_webhook") as webhook:
            report = notification_service.notify_batch([], [])

        webhook.assert_not_called()
        assert report.to_dict()["errors"] == []

    def test_admin_webhook_without_new_labels(self, notification_service, admin_phone):
        old = entry("AA1BR", is_new=False)

        with patch("integrations.n8n.post_webhook", return_value=True) as webhook, \
                patch("integrations.evolution.send_text") as whatsapp, \
                patch("integrations.google_sheets.append_rows") as sheets:
            report = notification_service.notify_batch([], [old], notify_clients=True, send_whatsapp=True)

        payload = webhook.call_args[0][0]
        assert payload["resumo"]["codigos"] == ["AA1BR"]
        assert payload["etiquetas"] == []
        assert report.webhook_sent is True
        whatsapp.assert_not_called()
        sheets.assert_not_called()
