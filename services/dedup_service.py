"""
CRM dedup/upsert for imported sales.

For each normalized record: find or create the lead by email, patch the
lead's empty fields, tag it with the product name and create the
business unless one with the same externalId already exists. The
externalId check is the only idempotency guarantee, so re-running a
file (or a retried queue task) never duplicates businesses.

Caches live on a DedupContext owned by one job run. Queue tasks get a
fresh context each, so they rely on the remote checks alone.
"""

from dataclasses import dataclass, field
from typing import Optional
import structlog

from config import settings
from exceptions import CrmApiError
from integrations.datacrazy import DatacrazyClient, extract_conflict_email
from services.rate_limiter import RateLimiter, get_rate_limiter
from services.record_normalizer import NormalizedRecord

logger = structlog.get_logger(__name__)

DEFAULT_LEAD_NAME = "Sem nome"

CREATED = "created"
EXISTS = "exists"
SKIPPED = "skipped"


@dataclass
class CachedLead:
    id: str
    tag_ids: list[str] = field(default_factory=list)


@dataclass
class RowResult:
    """Outcome of processing one record."""
    status: str
    message: str
    email: Optional[str] = None
    name: Optional[str] = None
    lead_id: Optional[str] = None
    lead_updated: bool = False


@dataclass
class DedupContext:
    """Per-run caches. Never shared between jobs."""
    lead_cache: dict[str, CachedLead] = field(default_factory=dict)
    tag_cache: dict[str, Optional[str]] = field(default_factory=dict)


def lead_source(platform: Optional[str]) -> str:
    if not platform:
        return settings.crm_lead_source
    return f"CSV {platform[:1].upper()}{platform[1:]}"


class DedupService:
    """
    Lead/business upsert against the CRM for one job run.

    Args:
        client: CRM client (built with the limiter when omitted)
        context: Caches for this run
        platform: Platform key, stamped as the lead source
    """

    def __init__(
        self,
        client: Optional[DatacrazyClient] = None,
        context: Optional[DedupContext] = None,
        platform: Optional[str] = None,
        limiter: Optional[RateLimiter] = None
    ):
        self.client = client or DatacrazyClient(limiter=limiter or get_rate_limiter())
        self.context = context or DedupContext()
        self.platform = platform

    # ===================
    # LEADS
    # ===================

    def find_or_create_lead(self, record: NormalizedRecord) -> tuple[CachedLead, bool]:
        """
        Resolve the lead id for the record's email.

        Existing leads get phone/taxId/address patched only where the
        remote value is empty. A create rejected with
        lead-with-same-contact-exists is recovered by searching the email
        quoted in the error.

        Returns:
            (lead, updated) where updated says whether empty fields were filled

        Raises:
            CrmApiError: Any CRM failure that could not be recovered
        """
        email = record.email
        cached = self.context.lead_cache.get(email)
        if cached:
            return cached, False

        found = self.client.search_leads(email)
        if found:
            remote = found[0]
            lead = CachedLead(id=remote["id"], tag_ids=_tag_ids(remote))
            self.context.lead_cache[email] = lead
            updated = self._fill_missing_fields(lead.id, remote, record)
            return lead, updated

        payload = {
            "name": record.name or DEFAULT_LEAD_NAME,
            "email": email,
            "source": lead_source(self.platform),
        }
        if record.phone:
            payload["phone"] = record.phone
        if record.tax_id:
            payload["taxId"] = record.tax_id
        if record.address and record.address.zip:
            payload["address"] = record.address.to_crm()

        try:
            created = self.client.create_lead(payload)
        except CrmApiError as e:
            if not e.is_lead_conflict:
                raise
            lead = self._recover_conflict(e)
            self.context.lead_cache[email] = lead
            return lead, False

        lead_id = created.get("id")
        if not lead_id:
            raise CrmApiError("CRM did not return an id for the new lead", endpoint="/leads")

        lead = CachedLead(id=lead_id)
        self.context.lead_cache[email] = lead
        logger.debug("lead_created", lead_id=lead_id)
        return lead, False

    def _recover_conflict(self, error: CrmApiError) -> CachedLead:
        existing_email = extract_conflict_email(error)
        if not existing_email:
            raise error

        found = self.client.search_leads(existing_email)
        if not found:
            raise error

        remote = found[0]
        logger.info("lead_conflict_recovered", lead_id=remote.get("id"))
        return CachedLead(id=remote["id"], tag_ids=_tag_ids(remote))

    def _fill_missing_fields(self, lead_id: str, remote: dict, record: NormalizedRecord) -> bool:
        update = {}
        if record.phone and not remote.get("phone"):
            update["phone"] = record.phone
        if record.tax_id and not remote.get("taxId"):
            update["taxId"] = record.tax_id
        remote_address = remote.get("address") or {}
        if record.address and record.address.zip and not remote_address.get("zip"):
            update["address"] = record.address.to_crm()

        if not update:
            return False

        self.client.patch_lead(lead_id, update)
        logger.debug("lead_fields_filled", lead_id=lead_id, fields=sorted(update))
        return True

    # ===================
    # TAGS
    # ===================

    def ensure_tag(self, lead: CachedLead, product_name: str) -> Optional[str]:
        """
        Attach the tag named after the product, if such a tag exists.

        Best effort: failures are logged and swallowed.

        Returns:
            Tag id attached (or already present), None otherwise
        """
        if not product_name:
            return None
        try:
            if product_name in self.context.tag_cache:
                tag_id = self.context.tag_cache[product_name]
            else:
                tags = self.client.search_tags(product_name)
                tag_id = tags[0].get("id") if tags else None
                self.context.tag_cache[product_name] = tag_id

            if tag_id and tag_id not in lead.tag_ids:
                tag_ids = lead.tag_ids + [tag_id]
                self.client.patch_lead(lead.id, {"tags": [{"id": t} for t in tag_ids]})
                lead.tag_ids = tag_ids
            return tag_id
        except Exception as e:
            logger.warning(
                "lead_tag_failed",
                lead_id=lead.id,
                product=product_name,
                error=str(e)
            )
            return None

    # ===================
    # BUSINESSES
    # ===================

    def upsert_business(self, lead_id: str, stage_id: str, transaction_id: str, total: float) -> str:
        """
        Create the business unless the lead already has one with this externalId.

        Returns:
            "created" or "exists"
        """
        businesses = self.client.list_lead_businesses(lead_id)
        if any(str(b.get("externalId")) == transaction_id for b in businesses):
            return EXISTS

        self.client.create_business(lead_id, stage_id, transaction_id, total)
        return CREATED

    # ===================
    # RECORD
    # ===================

    def process_record(self, record: NormalizedRecord, stage_id: str) -> RowResult:
        """
        Run the full dedup/upsert for one record.

        Records without email or transaction id are skipped before any
        CRM call.

        Raises:
            CrmApiError: Propagated to the orchestrator, which counts it
        """
        if not record.email or not record.transaction_id:
            return RowResult(
                status=SKIPPED,
                message="Missing email or transaction id",
                email=record.email,
                name=record.name,
            )

        lead, updated = self.find_or_create_lead(record)
        self.ensure_tag(lead, record.product)

        status = self.upsert_business(lead.id, stage_id, record.transaction_id, record.total)
        message = (
            f"Business created: R$ {record.total:.2f}" if status == CREATED
            else "Business already exists"
        )
        return RowResult(
            status=status,
            message=message,
            email=record.email,
            name=record.name,
            lead_id=lead.id,
            lead_updated=updated,
        )


def _tag_ids(remote_lead: dict) -> list[str]:
    return [t["id"] for t in (remote_lead.get("tags") or []) if t.get("id")]
