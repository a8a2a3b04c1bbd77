"""
Label notification service.

After a label batch: post the N8N webhook (admin summary always, client
entries only when client notification is on), optionally send client
WhatsApp messages directly through Evolution, and append the new labels
to the Google Sheets log. Each side effect runs on its own; a failure is
logged and reported but never undoes generated labels.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
import structlog

from config import settings
from integrations import evolution, google_sheets, n8n
from integrations.notification_messages import format_admin_summary, get_message
from integrations.vipp import build_print_url
from models.labels import LabelEntry
from services.record_normalizer import normalize_brazilian_phone

logger = structlog.get_logger(__name__)


@dataclass
class NotificationReport:
    """What each channel did for one batch."""
    webhook_sent: bool = False
    whatsapp_sent: int = 0
    whatsapp_failed: int = 0
    sheet_rows: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "webhook_sent": self.webhook_sent,
            "whatsapp_sent": self.whatsapp_sent,
            "whatsapp_failed": self.whatsapp_failed,
            "sheet_rows": self.sheet_rows,
            "errors": self.errors,
        }


def client_phone(entry: LabelEntry) -> Optional[str]:
    """Phone a client notification goes to; the test override wins."""
    if settings.client_phone_override:
        return normalize_brazilian_phone(settings.client_phone_override)
    return normalize_brazilian_phone(entry.order.phone)


def tracking_link(code: str) -> str:
    return f"{settings.tracking_url.rstrip('/')}/?objeto={code}"


def _webhook_entry(entry: LabelEntry) -> dict:
    order = entry.order
    return {
        "codigo": entry.code,
        "pdfUrl": build_print_url(entry.code),
        "transactionId": order.transaction_id,
        "produto": order.product,
        "clienteNome": order.name,
        "clienteEmail": order.email,
        "clienteLogradouro": order.address,
        "clienteNumero": order.number,
        "clienteComplemento": order.complement,
        "clienteBairro": order.neighborhood,
        "clienteCidade": order.city,
        "clienteUf": order.state,
        "clienteCep": order.zip,
    }


def _summary_entry(entry: LabelEntry) -> dict:
    order = entry.order
    return {
        "code": entry.code,
        "name": order.name,
        "city": order.city,
        "state": order.state,
        "product": order.product,
        "is_new": entry.is_new,
        "is_merged": order.is_merged,
        "merged_transaction_ids": order.merged_transaction_ids,
    }


def build_webhook_payload(
    new_entries: list[LabelEntry],
    all_entries: list[LabelEntry],
    notify_clients: bool,
    admin_phone: Optional[str]
) -> dict:
    """
    N8N payload for a batch.

    etiquetas carries only new labels whose client has a valid phone, and
    only when client notification is enabled; todasEtiquetas carries
    every label of the batch for the admin.
    """
    new_codes = {e.code for e in new_entries}

    client_entries = []
    without_phone = 0
    for entry in new_entries:
        phone = client_phone(entry)
        if phone is None:
            without_phone += 1
            continue
        client_entries.append({**_webhook_entry(entry), "clienteTelefone": phone})

    all_codes = [e.code for e in all_entries]
    return {
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "totalNovas": len(new_entries),
        "totalAdmin": len(all_entries),
        "adminPhone": admin_phone,
        "pdfUrlConsolidada": build_print_url(all_codes),
        "mensagemAdmin": format_admin_summary([_summary_entry(e) for e in all_entries]),
        "etiquetas": client_entries if notify_clients else [],
        "todasEtiquetas": [
            {
                **_webhook_entry(e),
                "isNova": e.code in new_codes,
                "isMerged": e.order.is_merged,
                "mergedTransactionIds": e.order.merged_transaction_ids,
                "produtos": e.order.products,
            }
            for e in all_entries
        ],
        "resumo": {
            "quantidadeNovas": len(new_entries),
            "quantidadeTotal": len(all_entries),
            "codigos": all_codes,
            "codigosNovos": [e.code for e in new_entries],
            "semTelefone": without_phone,
            "enviarClienteDesabilitado": not notify_clients,
        },
    }


class NotificationService:
    """
    Fan out a finished label batch.

    Args:
        sleep: Sleep function for the pause between WhatsApp messages
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self._sleep = sleep

    def notify_batch(
        self,
        new_entries: list[LabelEntry],
        all_entries: list[LabelEntry],
        notify_clients: Optional[bool] = None,
        send_whatsapp: bool = False,
        batch_id: Optional[str] = None
    ) -> NotificationReport:
        """
        Run every notification channel for a batch.

        Args:
            new_entries: Labels generated in this batch
            all_entries: Every label involved (new and previously generated)
            notify_clients: Client notification flag (settings default)
            send_whatsapp: Also message clients directly through Evolution
            batch_id: Label batch, for the log

        The admin webhook covers every label of the batch, so it goes out
        even when nothing new was generated. Client messages and the
        sheet log cover new labels only.
        """
        report = NotificationReport()
        if not all_entries:
            return report

        notify = settings.notify_clients if notify_clients is None else notify_clients

        self._send_webhook(new_entries, all_entries, notify, report)
        if send_whatsapp and notify:
            self._send_whatsapp(new_entries, report)
        self._append_sheet(new_entries, report)

        logger.info("label_notifications_done", batch_id=batch_id, **report.to_dict())
        return report

    def _send_webhook(self, new_entries, all_entries, notify: bool, report: NotificationReport) -> None:
        admin_phone = normalize_brazilian_phone(settings.admin_phone)
        if admin_phone is None:
            logger.warning("admin_phone_missing_skipping_webhook")
            report.errors.append("webhook: admin phone not configured")
            return
        try:
            payload = build_webhook_payload(new_entries, all_entries, notify, admin_phone)
            report.webhook_sent = n8n.post_webhook(payload)
        except Exception as e:
            logger.error("label_webhook_failed", error=str(e))
            report.errors.append(f"webhook: {e}")

    def _send_whatsapp(self, new_entries, report: NotificationReport) -> None:
        first = True
        for entry in new_entries:
            phone = client_phone(entry)
            if phone is None:
                continue
            if not first:
                self._sleep(settings.whatsapp_message_delay_seconds)
            first = False

            text = get_message(
                "client_label_ready",
                name=entry.order.name,
                product=entry.order.product,
                code=entry.code,
                tracking_link=tracking_link(entry.code),
            )
            try:
                if evolution.send_text(phone, text):
                    report.whatsapp_sent += 1
            except Exception as e:
                report.whatsapp_failed += 1
                report.errors.append(f"whatsapp {entry.order.transaction_id}: {e}")
                logger.warning("client_whatsapp_failed", transaction_id=entry.order.transaction_id, error=str(e))

    def _append_sheet(self, new_entries, report: NotificationReport) -> None:
        if not new_entries:
            return
        try:
            rows = [google_sheets.build_label_row(e) for e in new_entries]
            report.sheet_rows = google_sheets.append_rows(rows)
        except Exception as e:
            logger.error("label_sheet_log_failed", error=str(e))
            report.errors.append(f"sheets: {e}")


_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _service
    if _service is None:
        _service = NotificationService()
    return _service
