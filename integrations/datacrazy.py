"""
Datacrazy CRM REST client.

Leads (contacts), businesses (deals keyed by externalId) and tags.
Every request goes through the rate limiter first; HTTP failures raise
CrmApiError with the response body attached so callers can inspect it.
"""

import re
from typing import Any, Optional
from urllib.parse import quote
import requests
import structlog

from config import settings
from exceptions import CrmApiError
from services.rate_limiter import RateLimiter, get_rate_limiter

logger = structlog.get_logger(__name__)

_CONFLICT_EMAIL_RE = re.compile(r'"email"\s*:\s*"([^"]+)"')


def extract_conflict_email(error: CrmApiError) -> Optional[str]:
    """Pull the existing contact's email out of a lead-exists error body."""
    match = _CONFLICT_EMAIL_RE.search(error.body or "") or _CONFLICT_EMAIL_RE.search(error.message)
    return match.group(1) if match else None


class DatacrazyClient:
    """
    Minimal Datacrazy API client.

    Args:
        token: Bearer token (defaults to settings)
        base_url: API base URL (defaults to settings)
        limiter: Rate limiter wrapping every call
        session: requests.Session (injectable for tests)
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[int] = None
    ):
        self.token = token or settings.datacrazy_api_token
        self.base_url = (base_url or settings.datacrazy_api_url).rstrip("/")
        self.limiter = limiter or get_rate_limiter()
        self.session = session or requests.Session()
        self.timeout = timeout or settings.datacrazy_timeout_seconds

    def request(self, method: str, endpoint: str, body: Optional[dict] = None) -> Any:
        """
        Send one rate-limited request and return the decoded JSON.

        Raises:
            CrmApiError: Network failure or non-2xx response
        """
        self.limiter.acquire()
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("crm_request_failed", method=method, endpoint=endpoint, error=str(e))
            raise CrmApiError(f"CRM request failed: {e}", endpoint=endpoint)

        if not response.ok:
            text = response.text or ""
            logger.warning(
                "crm_api_error",
                method=method,
                endpoint=endpoint,
                status=response.status_code,
                body=text[:200]
            )
            raise CrmApiError(
                f"API Error {response.status_code}: {text[:300]}",
                status=response.status_code,
                body=text,
                endpoint=endpoint,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # ===================
    # LEADS
    # ===================

    def search_leads(self, email: str) -> list[dict]:
        result = self.request("GET", f"/leads?search={quote(email)}")
        return (result or {}).get("data") or []

    def create_lead(self, payload: dict) -> dict:
        return self.request("POST", "/leads", payload) or {}

    def patch_lead(self, lead_id: str, payload: dict) -> dict:
        return self.request("PATCH", f"/leads/{lead_id}", payload) or {}

    # ===================
    # TAGS
    # ===================

    def search_tags(self, name: str) -> list[dict]:
        result = self.request("GET", f"/tags?search={quote(name)}")
        return (result or {}).get("data") or []

    # ===================
    # BUSINESSES
    # ===================

    def list_lead_businesses(self, lead_id: str) -> list[dict]:
        result = self.request("GET", f"/leads/{lead_id}/businesses")
        return (result or {}).get("data") or []

    def create_business(self, lead_id: str, stage_id: str, external_id: str, total: float) -> dict:
        return self.request(
            "POST",
            "/businesses",
            {"leadId": lead_id, "stageId": stage_id, "externalId": external_id, "total": total},
        ) or {}
