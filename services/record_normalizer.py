"""
Per-row sanitation for imported sales.

Turns a raw {header: value} row into a NormalizedRecord using a
ColumnMapping. Every function here is pure.
"""

import re
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional
import structlog

from models.mapping import ColumnMapping
from utils.text_utils import digits_only, clean_text

logger = structlog.get_logger(__name__)

COUNTRY = "Brasil"

_BR_DATE_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:[ T](\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_PHYSICAL_MARKERS = ("físico", "fisico", "kit")


@dataclass
class Address:
    """Structured shipping address."""
    zip: str
    street: str = ""
    number: str = ""
    complement: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    country: str = COUNTRY

    @property
    def full_address(self) -> str:
        return compose_address(self.street, self.number, self.complement, self.neighborhood)

    def to_crm(self) -> dict:
        """Address object in the CRM's lead shape."""
        return {
            "zip": self.zip,
            "address": self.full_address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
        }


@dataclass
class NormalizedRecord:
    """One sanitized paid row, ready for the CRM."""
    index: int
    transaction_id: str
    email: Optional[str] = None
    name: str = ""
    phone: str = ""
    tax_id: str = ""
    product: str = ""
    total: float = 0.0
    status: str = ""
    address: Optional[Address] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "NormalizedRecord":
        data = dict(data)
        address = data.pop("address", None)
        return cls(address=Address(**address) if address else None, **data)


# ===================
# FIELD NORMALIZERS
# ===================

def normalize_email(raw: Optional[str]) -> Optional[str]:
    """Lowercase and trim; None unless it contains both "@" and "."."""
    if not raw:
        return None
    email = str(raw).strip().lower()
    if "@" not in email or "." not in email:
        return None
    return email


def normalize_phone(raw: Optional[str]) -> str:
    """Drop a leading "+" and every non-digit."""
    if not raw:
        return ""
    return digits_only(str(raw).strip().lstrip("+"))


def normalize_brazilian_phone(raw: Optional[str]) -> Optional[str]:
    """
    Normalize to 55 + DDD + number, or None.

    - "(11) 98765-4321" → "5511987654321"
    - "011 98765-4321" → "5511987654321"
    - "+55 11 8765-4321" → "551187654321"
    - "12345" → None

    Numbers that cannot reach 12 or 13 digits are rejected, never guessed.
    """
    number = digits_only(raw)
    if not number:
        return None

    if number.startswith("0"):
        number = number[1:]

    # Local numbers (DDD + 8 or 9 digits) get the country code, even when
    # the DDD itself is 55
    if len(number) in (10, 11):
        number = "55" + number

    if number.startswith("55") and len(number) in (12, 13):
        return number

    logger.debug("invalid_phone_dropped", digits=len(number))
    return None


def parse_flexible_date(raw: Optional[str]) -> int:
    """
    Parse a sale date to epoch milliseconds for sorting.

    Tries ISO 8601 first, then DD/MM/YYYY with optional HH:mm[:ss].
    Unparseable input returns 0. Naive times are taken as UTC.
    """
    if not raw:
        return 0
    text = str(raw).strip()

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None

    if parsed is None:
        match = _BR_DATE_RE.match(text)
        if not match:
            return 0
        day, month, year, hour, minute, second = match.groups()
        try:
            parsed = datetime(
                int(year), int(month), int(day),
                int(hour or 0), int(minute or 0), int(second or 0)
            )
        except ValueError:
            return 0

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def is_physical_product(name: Optional[str]) -> bool:
    """True when the product name mentions físico/fisico/kit."""
    if not name:
        return False
    lowered = name.lower()
    return any(marker in lowered for marker in _PHYSICAL_MARKERS)


def compose_address(
    street: Optional[str],
    number: Optional[str] = None,
    complement: Optional[str] = None,
    neighborhood: Optional[str] = None
) -> str:
    """
    Join address parts, skipping empty ones.

    "Rua A", "10", "Apto 2", "Centro" → "Rua A, 10 - Apto 2 - Centro"
    """
    text = clean_text(street)
    number = clean_text(number)
    if number:
        text = f"{text}, {number}" if text else number
    for part in (clean_text(complement), clean_text(neighborhood)):
        if part:
            text = f"{text} - {part}" if text else part
    return text


def parse_total(raw: Optional[str]) -> float:
    """
    Parse a money amount written with comma or dot decimals.

    - "1.234,56" → 1234.56
    - "R$ 97,00" → 97.0
    - "1,234.56" → 1234.56
    - "" or garbage → 0.0
    """
    if not raw:
        return 0.0
    text = re.sub(r"[^0-9,.\-]", "", str(raw))
    if not text:
        return 0.0

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".") if text.count(",") == 1 else text.replace(",", "")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    try:
        return float(text)
    except ValueError:
        return 0.0


# ===================
# ROW NORMALIZATION
# ===================

def _cell(row: dict, mapping: ColumnMapping, key: str) -> str:
    header = mapping.header_for(key)
    if not header:
        return ""
    return clean_text(row.get(header))


def normalize_row(row: dict, mapping: ColumnMapping, index: int = 0) -> NormalizedRecord:
    """
    Build a NormalizedRecord from a raw row.

    The address is only attached when a zip code is present; without
    one the CRM rejects the address object.
    """
    zip_code = digits_only(_cell(row, mapping, "zip"))
    address = None
    if zip_code:
        address = Address(
            zip=zip_code,
            street=_cell(row, mapping, "address"),
            number=_cell(row, mapping, "number"),
            complement=_cell(row, mapping, "complement"),
            neighborhood=_cell(row, mapping, "neighborhood"),
            city=_cell(row, mapping, "city"),
            state=_cell(row, mapping, "state"),
        )

    return NormalizedRecord(
        index=index,
        transaction_id=_cell(row, mapping, "transaction_id"),
        email=normalize_email(_cell(row, mapping, "email")),
        name=_cell(row, mapping, "name"),
        phone=normalize_phone(_cell(row, mapping, "phone")),
        tax_id=digits_only(_cell(row, mapping, "tax_id")),
        product=_cell(row, mapping, "product"),
        total=parse_total(_cell(row, mapping, "total")),
        status=_cell(row, mapping, "status"),
        address=address,
    )
