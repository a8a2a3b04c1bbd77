"""
N8N webhook integration.

The label batch summary is posted to an N8N workflow, which fans it out
to the admin and (optionally) client WhatsApp messages.
"""

from typing import Optional
import requests
import structlog

from config import settings
from exceptions import NotificationError

logger = structlog.get_logger(__name__)


def post_webhook(payload: dict, url: Optional[str] = None, timeout: int = 15) -> bool:
    """
    POST the payload to the N8N webhook.

    Args:
        payload: JSON body
        url: Override for the configured webhook URL

    Returns:
        False when no webhook is configured, True when delivered

    Raises:
        NotificationError: Request failed or N8N answered non-2xx
    """
    url = url or settings.n8n_webhook_url
    if not url:
        logger.warning("n8n_not_configured_skipping_send")
        return False

    try:
        response = requests.post(url, json=payload, timeout=timeout)
    except requests.exceptions.RequestException as e:
        logger.error("n8n_request_failed", error=str(e))
        raise NotificationError("n8n", f"Failed to call webhook: {e}")

    if not response.ok:
        logger.error("n8n_webhook_error", status=response.status_code, body=(response.text or "")[:200])
        raise NotificationError(
            "n8n",
            f"Webhook answered {response.status_code}",
            {"body": (response.text or "")[:500]}
        )

    logger.info("n8n_webhook_sent", status=response.status_code)
    return True
