"""
Platform presets for CSV imports and label generation.

Column maps, CRM stage ids and "paid" status values for the payment
platforms whose exports we import without a custom mapping.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PlatformPreset:
    """Built-in mapping for one payment platform's sales export."""
    key: str
    label: str
    stage_id: str
    status_filter: str
    columns: dict[str, str] = field(default_factory=dict)
    icon: Optional[str] = None


# =============================================================================
# CRM STAGES
# =============================================================================
# Datacrazy pipeline stage that new businesses land in, per platform

STAGE_HUBLA = "74022307-988f-4a81-a3df-c14b28bd41d9"
STAGE_HOTMART = "0c2bf45f-1c4b-4730-b02c-286b7c018f29"
STAGE_EDUZZ = "3bbc9611-aa0d-47d5-a755-a9cdcfc453ef"
STAGE_KIWIFY = "491a2794-7576-45d0-8d8e-d5a6855f17e2"
STAGE_WOO = "2c16fbba-092d-48a8-929b-55c5b9d638cc"


# =============================================================================
# COLUMN PRESETS
# =============================================================================

PLATFORMS: dict[str, PlatformPreset] = {
    "hubla": PlatformPreset(
        key="hubla",
        label="Hubla",
        stage_id=STAGE_HUBLA,
        status_filter="Paga",
        icon="hubla.jpeg",
        columns={
            "email": "Email do cliente",
            "name": "Nome do cliente",
            "phone": "Telefone do cliente",
            "tax_id": "Documento do cliente",
            "product": "Nome do produto",
            "transaction_id": "ID da fatura",
            "total": "Valor total",
            "status": "Status da fatura",
            "zip": "Endereço CEP",
            "address": "Endereço Rua",
            "city": "Endereço Cidade",
            "state": "Endereço Estado",
        },
    ),
    "hotmart": PlatformPreset(
        key="hotmart",
        label="Hotmart",
        stage_id=STAGE_HOTMART,
        status_filter="Aprovado",
        icon="hotmart.jpeg",
        columns={
            "email": "Email",
            "name": "Nome",
            "phone": "Telefone Final",
            "tax_id": "Documento",
            "product": "Nome do Produto",
            "transaction_id": "Transação",
            "total": "Preço Total",
            "status": "Status",
            "zip": "CEP",
            "address": "Endereço",
            "number": "Número",
            "complement": "Complemento",
            "neighborhood": "Bairro",
            "city": "Cidade",
            "state": "Estado",
        },
    ),
    "eduzz": PlatformPreset(
        key="eduzz",
        label="Eduzz",
        stage_id=STAGE_EDUZZ,
        status_filter="Paga",
        icon="eduzz.jpg",
        columns={
            "email": "Cliente / E-mail",
            "name": "Cliente / Nome",
            "phone": "Cliente / Fones",
            "tax_id": "Cliente / Documento",
            "product": "Produto",
            "transaction_id": "Fatura",
            "total": "Valor da Venda",
            "status": "Status",
            "zip": "CEP",
            "address": "Endereço",
            "number": "Numero",
            "complement": "Complemento",
            "neighborhood": "Bairro",
            "city": "Cidade",
            "state": "UF",
        },
    ),
    "kiwify": PlatformPreset(
        key="kiwify",
        label="Kiwify",
        stage_id=STAGE_KIWIFY,
        status_filter="paid",
        icon="kiwify.png",
        columns={
            "email": "Email",
            "name": "Cliente",
            "phone": "Celular",
            "tax_id": "CPF / CNPJ",
            "product": "Produto",
            "transaction_id": "ID da venda",
            "total": "Valor líquido",
            "status": "Status",
            "zip": "CEP",
            "address": "Endereço",
            "number": "Numero",
            "complement": "Complemento",
            "neighborhood": "Bairro",
            "city": "Cidade",
            "state": "Estado",
        },
    ),
    "woo": PlatformPreset(
        key="woo",
        label="WooCommerce",
        stage_id=STAGE_WOO,
        status_filter="wc-completed",
        icon="woo.png",
        columns={
            "email": "Billing Email Address",
            "name": "Billing First Name",
            "phone": "Billing Phone",
            "tax_id": "_billing_cpf",
            "product": "Product Name #1",
            "transaction_id": "Order ID",
            "total": "Order Total",
            "status": "Order Status",
            "zip": "Billing Postcode",
            "address": "Billing Address 1",
            "complement": "Billing Address 2",
            "neighborhood": "_billing_neighborhood",
            "city": "Billing City",
            "state": "Billing State",
        },
    ),
}


def get_platform(key: str) -> Optional[PlatformPreset]:
    """Look up a preset by key (case-insensitive)."""
    return PLATFORMS.get((key or "").strip().lower())


# =============================================================================
# LABEL WORKSTATION (HOTMART SALES EXPORT)
# =============================================================================
# The label workstation reads Hotmart's full sales export, which uses a
# different layout from the CRM import export above.

LABEL_COLUMNS = {
    "product": "Produto",
    "product_code": "Código do produto",
    "transaction_id": "Código da transação",
    "status": "Status da transação",
    "name": "Comprador(a)",
    "tax_id": "Documento",
    "email": "Email do(a) Comprador(a)",
    "phone": "Telefone",
    "zip": "Código postal",
    "city": "Cidade",
    "state": "Estado / Província",
    "neighborhood": "Bairro",
    "country": "País",
    "address": "Endereço",
    "number": "Número",
    "complement": "Complemento",
    "sale_date": "Data da transação",
    "total": "Valor de compra com impostos",
}

LABEL_PAID_STATUSES = frozenset({"Aprovado", "Completo"})

# ECT service codes offered when generating labels
ECT_SERVICES = {
    "201501": "IMPRESSO Normal Módico",
    "3298": "PAC",
    "3220": "SEDEX",
}

# Hotmart tracking importer header, must match byte for byte
TRACKING_CSV_HEADER = (
    "Código da compra,Data da compra,Produto,Responsável pela entrega,"
    "Código de rastreio,Status de envio,Link de rastreio"
)
TRACKING_CARRIER = "Envio Próprio"
TRACKING_STATUS = "Enviado"
