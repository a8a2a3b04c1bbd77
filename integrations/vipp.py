"""
ViPP (Visualset) label printing client.

post_object() registers one shipment with Correios through ViPP and
returns the label (tracking) code. print_labels() fetches a PDF holding
any number of previously generated labels.
"""

import time
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlencode
import requests
import structlog

from config import settings
from exceptions import LabelsNotReadyError, VippAuthError, VippError
from models.labels import Order
from utils.text_utils import digits_only

logger = structlog.get_logger(__name__)

# ViPP print endpoint status codes
STATUS_LABELS_NOT_FOUND = 215
STATUS_BAD_CREDENTIALS = 210

# Filtro=1 selects by ECT registration (label code); Saida=20 is the Correios 10x15 PDF
PRINT_FILTER = "1"
PRINT_OUTPUT_PDF = "20"

DEFAULT_VOLUME = {
    "Peso": "500",
    "Altura": "5",
    "Largura": "15",
    "Comprimento": "20",
    "Conteudo": "Livro",
}


@dataclass
class PrintResult:
    """Either the PDF itself or a URL the operator can open."""
    pdf: Optional[bytes] = None
    url: Optional[str] = None


def build_print_url(codes: Union[str, list[str]]) -> str:
    """Direct download URL for one or more label codes."""
    listing = codes if isinstance(codes, str) else ",".join(codes)
    params = urlencode({
        "Usr": settings.vipp_user or "",
        "Pwd": settings.vipp_password or "",
        "Filtro": PRINT_FILTER,
        "Saida": PRINT_OUTPUT_PDF,
        "Lista": listing,
    })
    return f"{settings.vipp_print_url.rstrip('/')}/ImpressaoRemota.php?{params}"


def _mask(secret: Optional[str]) -> str:
    return f"{secret[:3]}***" if secret else "(empty)"


def masked_config() -> dict:
    """Current ViPP configuration, password masked."""
    return {
        "post_url": settings.vipp_post_url,
        "print_url": settings.vipp_print_url,
        "user": settings.vipp_user or "(empty)",
        "password": _mask(settings.vipp_password),
        "profile_id": settings.vipp_profile_id or "(empty)",
        "contract_number": settings.vipp_contract_number or "(empty)",
        "admin_code": settings.vipp_admin_code or "(empty)",
        "card_number": settings.vipp_card_number or "(empty)",
        "default_service": settings.vipp_default_service,
        "environment": settings.vipp_environment,
    }


def credentials_test_order() -> Order:
    """Dummy recipient for a credential check posting."""
    return Order(
        transaction_id=f"TESTE-{int(time.time() * 1000)}",
        products=["Livro Teste"],
        name="TESTE CREDENCIAIS",
        email="teste@teste.com",
        phone="85999999999",
        tax_id="12345678900",
        zip="60000000",
        address="RUA TESTE",
        number="123",
        neighborhood="CENTRO",
        city="FORTALEZA",
        state="CE",
    )


def build_post_payload(order: Order, service_code: str, barcode: Optional[str] = None) -> dict:
    """PostarObjeto request body for one order."""
    return {
        "PerfilVipp": {
            "Usuario": settings.vipp_user or "",
            "Token": settings.vipp_password or "",
            "IdPerfil": settings.vipp_profile_id or "",
        },
        "ContratoEct": {
            "NrContrato": settings.vipp_contract_number or "",
            "CodigoAdministrativo": settings.vipp_admin_code or "",
            "NrCartao": settings.vipp_card_number or "",
        },
        "Destinatario": {
            "CnpjCpf": digits_only(order.tax_id),
            "IeRg": "",
            "Nome": order.name,
            "SegundaLinhaDestinatario": "",
            "Endereco": order.address,
            "Numero": order.number or "S/N",
            "Complemento": order.complement or "",
            "Bairro": order.neighborhood or "",
            "Cidade": order.city,
            "UF": order.state,
            "Cep": digits_only(order.zip),
            "Telefone": digits_only(order.phone),
            "Celular": "",
            "Email": order.email or "",
        },
        "Servico": {"ServicoECT": service_code},
        "NotasFiscais": [{
            "DtNotaFiscal": "",
            "SerieNotaFiscal": "",
            "NrNotaFiscal": "",
            "VlrTotalNota": "",
        }],
        "Volumes": [{
            **DEFAULT_VOLUME,
            "ContaLote": "",
            "ChaveRoteamento": "",
            "CodigoBarraVolume": "",
            "CodigoBarraCliente": barcode or order.transaction_id,
            "ObservacaoVisual": "",
            "ObservacaoQuatro": "",
            "ObservacaoCinco": "",
            "PosicaoVolume": "1",
            "ValorDeclarado": "",
            "AdicionaisVolume": "",
            "VlrACobrar": "",
            "Etiqueta": "",
        }],
    }


class VippClient:
    """
    Thin ViPP client.

    Args:
        session: requests.Session (injectable for tests)
        timeout: Request timeout in seconds
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = 30):
        self.session = session or requests.Session()
        self.timeout = timeout

    def post_object(self, order: Order, service_code: Optional[str] = None) -> str:
        """
        Register a shipment and return its label code.

        Raises:
            VippError: Network failure, ViPP validation errors, invalid
                       posting or no label in the response
        """
        service = service_code or order.service_code or settings.vipp_default_service
        payload = build_post_payload(order, service)

        try:
            response = self.session.post(
                settings.vipp_post_url,
                json=payload,
                headers={"Content-Type": "application/json", "Accept-Encoding": "UTF-8"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("vipp_request_failed", transaction_id=order.transaction_id, error=str(e))
            raise VippError(f"ViPP request failed: {e}")

        try:
            data = response.json()
        except ValueError:
            raise VippError("Invalid ViPP response", {"raw": (response.text or "")[:500]})

        errors = data.get("ListaErros") or []
        if errors:
            message = ", ".join(e.get("Descricao", "") for e in errors)
            logger.warning("vipp_post_rejected", transaction_id=order.transaction_id, errors=message)
            raise VippError(message, {"errors": errors})

        if data.get("StatusPostagem") == "Invalida":
            raise VippError("Invalid posting", {"status": "Invalida"})

        volumes = data.get("Volumes") or []
        code = volumes[0].get("Etiqueta") if volumes else None
        if not code:
            raise VippError("ViPP did not return a label")

        logger.info("vipp_label_generated", transaction_id=order.transaction_id, code=code, service=service)
        return code

    def print_labels(self, codes: list[str]) -> PrintResult:
        """
        Fetch the PDF for label codes.

        Returns:
            PrintResult with pdf bytes, or with the direct URL when ViPP
            answers with something other than a PDF

        Raises:
            LabelsNotReadyError: ViPP does not know the codes yet
            VippAuthError: Bad ViPP credentials
            VippError: Any other failure
        """
        url = build_print_url(codes)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("vipp_print_failed", count=len(codes), error=str(e))
            raise VippError(f"ViPP request failed: {e}")

        if response.status_code == STATUS_LABELS_NOT_FOUND:
            raise LabelsNotReadyError(codes)
        if response.status_code == STATUS_BAD_CREDENTIALS:
            raise VippAuthError()
        if not response.ok:
            raise VippError(f"Failed to generate PDF: {response.status_code}")

        content_type = response.headers.get("content-type", "")
        if "application/pdf" in content_type:
            logger.info("vipp_pdf_fetched", count=len(codes), size=len(response.content))
            return PrintResult(pdf=response.content)

        text = response.text or ""
        if "erro" in text or "Erro" in text or "ERROR" in text:
            raise VippError("ViPP error", {"message": text[:500]})

        return PrintResult(url=url)

    def check_credentials(self) -> dict:
        """
        Post a dummy shipment with the configured credentials.

        A success consumes a real label. Rejections (bad user, profile or
        contract) come back as success False with ViPP's messages.
        """
        try:
            code = self.post_object(credentials_test_order())
        except VippError as e:
            logger.warning("vipp_credentials_rejected", error=e.message)
            return {"success": False, "error": e.message, "details": e.details}

        logger.info("vipp_credentials_ok", code=code)
        return {
            "success": True,
            "code": code,
            "warning": "A real label was generated by this check",
        }


_client: Optional[VippClient] = None


def get_vipp_client() -> VippClient:
    global _client
    if _client is None:
        _client = VippClient()
    return _client
