"""
Evolution API (WhatsApp) integration.

Sends plain text messages through a configured Evolution instance.
"""

from typing import Optional
import requests
import structlog

from config import settings
from exceptions import NotificationError

logger = structlog.get_logger(__name__)


def send_text(number: str, text: str, session: Optional[requests.Session] = None, timeout: int = 15) -> bool:
    """
    Send one WhatsApp text message.

    Args:
        number: Full international number, digits only (5511999999999)
        text: Message body

    Returns:
        False when Evolution is not configured, True when sent

    Raises:
        NotificationError: Request failed or Evolution answered non-2xx
    """
    if not settings.evolution_configured:
        logger.warning("evolution_not_configured_skipping_send")
        return False

    url = f"{settings.evolution_api_url.rstrip('/')}/message/sendText/{settings.evolution_instance}"
    http = session or requests

    try:
        response = http.post(
            url,
            json={"number": number, "text": text},
            headers={"Content-Type": "application/json", "apikey": settings.evolution_api_key},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        logger.error("evolution_request_failed", error=str(e))
        raise NotificationError("evolution", f"Failed to send WhatsApp message: {e}")

    if not response.ok:
        logger.error("evolution_api_error", status=response.status_code, body=(response.text or "")[:200])
        raise NotificationError(
            "evolution",
            f"Evolution API answered {response.status_code}",
            {"body": (response.text or "")[:500]}
        )

    logger.info("whatsapp_message_sent", digits=len(number))
    return True
