"""
Google Sheets label log.

Every generated label is appended as one row to a shared spreadsheet
(columns A:U) using a service account.
"""

from typing import Any, List
import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build

from config import settings
from exceptions import NotificationError
from models.labels import LabelEntry

logger = structlog.get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

"""
Label log columns:

A: Código
B: Transaction
C: Data Pedido
D: Data Geração
E: Produto(s)
F: Cliente
G: Documento
H: Telefone
I: Email
J: Endereço
K: Bairro
L: Cidade
M: UF
N: CEP
O: Envio (n/total, multi-shipment only)
P: Observação
Q: Parcial
R: Mesclado
S: Pedidos Mesclados
T: Link Rastreio
U: Modo
"""
LOG_RANGE = "A:U"


def get_credentials():
    """Service account credentials from the configured key file."""
    if not settings.google_service_account_file:
        raise NotificationError("sheets", "GOOGLE_SERVICE_ACCOUNT_FILE is not configured")
    return service_account.Credentials.from_service_account_file(
        settings.google_service_account_file,
        scopes=SCOPES
    )


def build_label_row(entry: LabelEntry) -> List[str]:
    """One spreadsheet row for a label."""
    order = entry.order
    address = ", ".join(p for p in (order.address, order.number, order.complement) if p)
    partial = entry.shipment_total > 1 and entry.shipment_index < entry.shipment_total
    return [
        entry.code,
        order.transaction_id,
        order.sale_date,
        entry.generated_at.strftime("%d/%m/%Y %H:%M") if entry.generated_at else "",
        order.product,
        order.name,
        order.tax_id,
        order.phone,
        order.email,
        address,
        order.neighborhood,
        order.city,
        order.state,
        order.zip,
        f"{entry.shipment_index}/{entry.shipment_total}" if entry.shipment_total > 1 else "",
        order.last_error or "",
        "Sim" if partial else "",
        "Sim" if order.is_merged else "",
        ", ".join(order.merged_transaction_ids),
        f"{settings.tracking_url.rstrip('/')}/?objeto={entry.code}",
        "Teste" if entry.is_test else "Produção",
    ]


def append_rows(rows: List[List[Any]], service=None) -> int:
    """
    Append rows to the label log sheet.

    Args:
        rows: Row values (USER_ENTERED, so dates and numbers are parsed)
        service: Sheets API resource (built from credentials when omitted)

    Returns:
        Number of rows appended (0 when Sheets is not configured)

    Raises:
        NotificationError: API call failed
    """
    if not settings.sheets_configured:
        logger.warning("sheets_not_configured_skipping_append")
        return 0
    if not rows:
        return 0

    try:
        if service is None:
            service = build("sheets", "v4", credentials=get_credentials())
        (
            service.spreadsheets()
            .values()
            .append(
                spreadsheetId=settings.google_sheets_spreadsheet_id,
                range=f"{settings.google_sheets_sheet_name}!{LOG_RANGE}",
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": rows},
            )
            .execute()
        )
    except NotificationError:
        raise
    except Exception as e:
        logger.error("sheets_append_failed", rows=len(rows), error=str(e))
        raise NotificationError("sheets", f"Failed to append rows: {e}")

    logger.info("sheets_rows_appended", rows=len(rows))
    return len(rows)
