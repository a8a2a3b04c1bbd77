"""
Unit tests for the outbound HTTP clients (ViPP, Datacrazy, N8N, Evolution,
Google Sheets). Every request is answered by a mock.

Run: pytest tests/unit/test_integrations.py -v
"""

import pytest
import requests
from unittest.mock import MagicMock, patch

from config import settings
from exceptions import CrmApiError, LabelsNotReadyError, NotificationError, VippAuthError, VippError
from integrations import evolution, google_sheets, n8n
from integrations.datacrazy import DatacrazyClient, extract_conflict_email
from integrations.vipp import VippClient, build_post_payload, build_print_url
from models.labels import LabelEntry
from services.rate_limiter import RateLimiter
from tests.factories import OrderFactory


def make_response(status=200, json_data=None, text="", content=None, headers=None):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text
    response.headers = headers or {}
    response.content = content if content is not None else (b"{}" if json_data is not None else b"")
    if json_data is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_data
    return response


# ===================
# VIPP
# ===================

class TestVippPayload:

    def test_recipient_fields_are_digits(self):
        order = OrderFactory.create(tax_id="123.456.789-09", zip="01310-100", phone="(11) 98765-4321", number="")

        payload = build_post_payload(order, "03220")

        recipient = payload["Destinatario"]
        assert recipient["CnpjCpf"] == "12345678909"
        assert recipient["Cep"] == "01310100"
        assert recipient["Telefone"] == "11987654321"
        assert recipient["Numero"] == "S/N"
        assert payload["Servico"]["ServicoECT"] == "03220"
        assert payload["Volumes"][0]["CodigoBarraCliente"] == order.transaction_id

    def test_print_url_lists_codes(self):
        url = build_print_url(["AA1BR", "AA2BR"])

        assert "ImpressaoRemota.php" in url
        assert "Lista=AA1BR%2CAA2BR" in url


class TestVippClient:

    def test_post_returns_label(self):
        session = MagicMock()
        session.post.return_value = make_response(json_data={"Volumes": [{"Etiqueta": "AA123456789BR"}]})

        code = VippClient(session=session).post_object(OrderFactory.create(), "03220")

        assert code == "AA123456789BR"

    def test_post_validation_errors(self):
        session = MagicMock()
        session.post.return_value = make_response(json_data={"ListaErros": [{"Descricao": "CEP inválido"}]})

        with pytest.raises(VippError) as exc_info:
            VippClient(session=session).post_object(OrderFactory.create())

        assert "CEP inválido" in exc_info.value.message

    def test_post_invalid_posting(self):
        session = MagicMock()
        session.post.return_value = make_response(json_data={"StatusPostagem": "Invalida"})

        with pytest.raises(VippError):
            VippClient(session=session).post_object(OrderFactory.create())

    def test_post_network_failure(self):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(VippError):
            VippClient(session=session).post_object(OrderFactory.create())

    def test_print_pdf(self):
        session = MagicMock()
        session.get.return_value = make_response(content=b"%PDF-1.4", headers={"content-type": "application/pdf"})

        result = VippClient(session=session).print_labels(["AA1BR"])

        assert result.pdf == b"%PDF-1.4"

    def test_print_labels_not_ready(self):
        session = MagicMock()
        session.get.return_value = make_response(status=215)

        with pytest.raises(LabelsNotReadyError):
            VippClient(session=session).print_labels(["AA1BR"])

    def test_print_bad_credentials(self):
        session = MagicMock()
        session.get.return_value = make_response(status=210)

        with pytest.raises(VippAuthError):
            VippClient(session=session).print_labels(["AA1BR"])

    def test_print_html_page_returns_url(self):
        session = MagicMock()
        session.get.return_value = make_response(text="<html>ok</html>", headers={"content-type": "text/html"})

        result = VippClient(session=session).print_labels(["AA1BR"])

        assert result.pdf is None
        assert "AA1BR" in result.url


# ===================
# DATACRAZY
# ===================

class TestDatacrazyClient:

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def client(self, session):
        return DatacrazyClient(
            token="tok",
            base_url="https://crm.test/api/",
            limiter=RateLimiter(max_calls=100, sleep=lambda s: None),
            session=session,
        )

    def test_search_leads_unwraps_data(self, client, session):
        session.request.return_value = make_response(json_data={"data": [{"id": "lead-1"}]})

        leads = client.search_leads("ana+teste@example.com")

        assert leads == [{"id": "lead-1"}]
        method, url = session.request.call_args[0]
        assert method == "GET"
        assert url == "https://crm.test/api/leads?search=ana%2Bteste%40example.com"
        assert session.request.call_args[1]["headers"]["Authorization"] == "Bearer tok"

    def test_error_carries_body(self, client, session):
        body = '{"code":"lead-with-same-contact-exists","email":"ana@example.com"}'
        session.request.return_value = make_response(status=400, text=body)

        with pytest.raises(CrmApiError) as exc_info:
            client.create_lead({"email": "ana@example.com"})

        error = exc_info.value
        assert error.status == 400
        assert error.is_lead_conflict is True
        assert extract_conflict_email(error) == "ana@example.com"

    def test_empty_body_is_none(self, client, session):
        session.request.return_value = make_response(status=204)

        assert client.request("PATCH", "/leads/1", {"name": "x"}) is None

    def test_create_business_payload(self, client, session):
        session.request.return_value = make_response(json_data={"id": "biz-1"})

        client.create_business("lead-1", "stage-1", "HP1", 97.0)

        assert session.request.call_args[1]["json"] == {
            "leadId": "lead-1", "stageId": "stage-1", "externalId": "HP1", "total": 97.0,
        }

    def test_every_call_goes_through_limiter(self, session):
        limiter = MagicMock()
        session.request.return_value = make_response(json_data={"data": []})
        client = DatacrazyClient(token="tok", base_url="https://crm.test", limiter=limiter, session=session)

        client.search_tags("Livro")
        client.list_lead_businesses("lead-1")

        assert limiter.acquire.call_count == 2


# ===================
# N8N / EVOLUTION
# ===================

class TestN8n:

    def test_not_configured_skips(self):
        with patch.object(settings, "n8n_webhook_url", None), patch("requests.post") as post:
            assert n8n.post_webhook({"a": 1}) is False
        post.assert_not_called()

    def test_posts_json(self):
        with patch("requests.post", return_value=make_response()) as post:
            assert n8n.post_webhook({"a": 1}, url="https://n8n.test/hook") is True
        assert post.call_args[1]["json"] == {"a": 1}

    def test_non_2xx_raises(self):
        with patch("requests.post", return_value=make_response(status=500, text="boom")):
            with pytest.raises(NotificationError):
                n8n.post_webhook({}, url="https://n8n.test/hook")


class TestEvolution:

    @pytest.fixture
    def configured(self):
        with patch.object(settings, "evolution_api_url", "https://evo.test/"), \
                patch.object(settings, "evolution_api_key", "key"), \
                patch.object(settings, "evolution_instance", "brandinglab"):
            yield

    def test_not_configured_skips(self):
        with patch.object(settings, "evolution_api_url", None):
            assert evolution.send_text("5511987654321", "oi") is False

    def test_sends_text(self, configured):
        session = MagicMock()
        session.post.return_value = make_response()

        assert evolution.send_text("5511987654321", "oi", session=session) is True

        url = session.post.call_args[0][0]
        assert url == "https://evo.test/message/sendText/brandinglab"
        assert session.post.call_args[1]["json"] == {"number": "5511987654321", "text": "oi"}
        assert session.post.call_args[1]["headers"]["apikey"] == "key"

    def test_error_raises(self, configured):
        session = MagicMock()
        session.post.return_value = make_response(status=401, text="unauthorized")

        with pytest.raises(NotificationError):
            evolution.send_text("5511987654321", "oi", session=session)


# ===================
# GOOGLE SHEETS
# ===================

class TestGoogleSheets:

    def test_label_row_columns(self):
        order = OrderFactory.create(
            is_merged=True, merge_id="merge_x", merged_transaction_ids=["HP1", "HP2"], complement="Apto 2"
        )
        row = google_sheets.build_label_row(
            LabelEntry(code="AA1BR", order=order, shipment_index=1, shipment_total=2, is_test=True)
        )

        assert len(row) == 21
        assert row[0] == "AA1BR"
        assert row[9] == "Avenida Paulista, 1000, Apto 2"
        assert row[14] == "1/2"
        assert row[16] == "Sim"
        assert row[17] == "Sim"
        assert row[18] == "HP1, HP2"
        assert row[20] == "Teste"

    def test_not_configured_appends_nothing(self):
        with patch.object(settings, "google_sheets_spreadsheet_id", None):
            assert google_sheets.append_rows([["a"]]) == 0

    def test_append_through_service(self):
        service = MagicMock()

        with patch.object(settings, "google_sheets_spreadsheet_id", "sheet-1"):
            assert google_sheets.append_rows([["a"], ["b"]], service=service) == 2

        kwargs = service.spreadsheets.return_value.values.return_value.append.call_args[1]
        assert kwargs["spreadsheetId"] == "sheet-1"
        assert kwargs["body"] == {"values": [["a"], ["b"]]}
        assert kwargs["valueInputOption"] == "USER_ENTERED"

    def test_api_failure_wrapped(self):
        service = MagicMock()
        service.spreadsheets.side_effect = RuntimeError("quota")

        with patch.object(settings, "google_sheets_spreadsheet_id", "sheet-1"):
            with pytest.raises(NotificationError):
                google_sheets.append_rows([["a"]], service=service)
