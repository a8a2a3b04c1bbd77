"""
Column mapping between platform CSV headers and the import schema.

Pure functions: auto-detection by keyword, validation against a file's
header set, and lookup of built-in platform presets.
"""

from typing import Optional, Sequence
import structlog

from config.platforms import PLATFORMS, get_platform
from models.mapping import ColumnMapping, HEADER_FIELDS, REQUIRED_MAPPING_FIELDS
from exceptions import UnknownPlatformError
from utils.text_utils import normalize_key

logger = structlog.get_logger(__name__)


# Keywords per logical field, matched as substrings of the normalized
# header. Field order matters: earlier fields claim headers first.
KEYWORDS: dict[str, list[str]] = {
    "email": ["email", "e-mail", "e_mail", "mail"],
    "name": ["nome", "name", "cliente", "customer", "nome do cliente", "nome completo"],
    "phone": ["telefone", "phone", "fone", "celular", "mobile", "tel"],
    "tax_id": ["cpf", "cnpj", "documento", "document", "cpf/cnpj", "tax"],
    "product": ["produto", "product", "nome do produto", "item"],
    "transaction_id": ["transacao", "transaction", "id", "fatura", "invoice", "pedido", "order"],
    "total": ["total", "valor", "value", "price", "preco", "amount"],
    "status": ["status", "situacao", "state"],
    "zip": ["cep", "zip", "codigo postal", "postal"],
    "address": ["rua", "endereco", "address", "logradouro", "street"],
    "number": ["numero", "number", "nº", "num"],
    "complement": ["complemento", "complement", "comp"],
    "neighborhood": ["bairro", "neighborhood", "district"],
    "city": ["cidade", "city", "municipio"],
    "state": ["estado", "state", "uf"],
}


def auto_detect(headers: Sequence[str], seed: Optional[ColumnMapping] = None) -> ColumnMapping:
    """
    Guess a mapping from header names.

    For each field, in KEYWORDS order, the first header (in file order)
    that contains one of the field's keywords and is not yet claimed by
    an earlier field wins. Fields without a match stay unset.

    Args:
        headers: Header row of the uploaded file
        seed: Previously used mapping; its entries that still exist in
              this file are kept and claim their headers first

    Returns:
        ColumnMapping (deterministic for the same header order)
    """
    header_set = set(headers)
    detected: dict[str, Optional[str]] = {}
    claimed: set[str] = set()

    if seed is not None:
        for key, header in seed.mapped_headers().items():
            if header in header_set and header not in claimed:
                detected[key] = header
                claimed.add(header)
        if seed.status_filter:
            detected["status_filter"] = seed.status_filter

    normalized = [(header, normalize_key(header)) for header in headers]

    for key, keywords in KEYWORDS.items():
        if detected.get(key):
            continue
        for header, norm in normalized:
            if header in claimed:
                continue
            if any(keyword in norm for keyword in keywords):
                detected[key] = header
                claimed.add(header)
                break

    logger.debug(
        "columns_auto_detected",
        header_count=len(headers),
        mapped=sorted(k for k, v in detected.items() if v)
    )

    return ColumnMapping(**detected)


def validate(
    mapping: ColumnMapping,
    required_keys: Sequence[str],
    headers: Sequence[str]
) -> list[str]:
    """
    List required keys whose header is unset or absent from the file.

    status_filter is a value rather than a header; it only has to be set.

    Returns:
        Missing logical keys, empty when the mapping is usable
    """
    header_set = set(headers)
    missing = []
    for key in required_keys:
        value = getattr(mapping, key, None)
        if not value:
            missing.append(key)
        elif key in HEADER_FIELDS and value not in header_set:
            missing.append(key)
    return missing


def validate_required(mapping: ColumnMapping, headers: Sequence[str]) -> list[str]:
    """validate() with the import pipeline's required keys."""
    return validate(mapping, REQUIRED_MAPPING_FIELDS, headers)


def missing_columns(mapping: ColumnMapping, headers: Sequence[str]) -> list[str]:
    """
    List every mapped header (required or optional) the file lacks.

    Used to decide whether a saved template still fits a new file.
    """
    header_set = set(headers)
    missing = validate_required(mapping, headers)
    for key, header in mapping.mapped_headers().items():
        if header not in header_set and key not in missing:
            missing.append(key)
    return missing


def is_compatible(mapping: ColumnMapping, headers: Sequence[str]) -> bool:
    return not missing_columns(mapping, headers)


def resolve_platform(platform: str) -> tuple[ColumnMapping, str]:
    """
    Build the mapping and CRM stage for a built-in platform.

    Raises:
        UnknownPlatformError: No preset for this key
    """
    preset = get_platform(platform)
    if preset is None:
        raise UnknownPlatformError(platform, sorted(PLATFORMS))

    mapping = ColumnMapping(status_filter=preset.status_filter, **preset.columns)
    return mapping, preset.stage_id
