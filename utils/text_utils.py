"""
Text utilities for handling Portuguese text with accents.

Used for header matching and recipient comparison.
"""

import re
import unicodedata
from typing import Optional

_WHITESPACE_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")


def strip_accents(text: str) -> str:
    """
    Remove accent marks, keeping base characters.

    - "Transação" → "Transacao"
    - "Número" → "Numero"
    """
    # NFD decomposition separates base chars from accents
    normalized = unicodedata.normalize('NFD', text)

    # Remove accent marks (combining characters in Unicode category 'Mn')
    return ''.join(
        c for c in normalized
        if unicodedata.category(c) != 'Mn'
    )


def normalize_key(text: Optional[str]) -> str:
    """
    Normalize text for case/accent-insensitive comparison.

    - "  Endereço  CEP " → "endereco cep"
    - None → ""

    Args:
        text: Raw header, name or address fragment

    Returns:
        Lowercase ASCII string with collapsed whitespace
    """
    if not text:
        return ""

    text = strip_accents(str(text)).lower()
    return _WHITESPACE_RE.sub(" ", text).strip()


def digits_only(value: Optional[str]) -> str:
    """Strip every non-digit character."""
    if not value:
        return ""
    return _NON_DIGIT_RE.sub("", str(value))


def clean_text(value: Optional[str], max_length: int = 255) -> str:
    """
    Clean a free-text cell for storage (preserves accents).

    - Strips whitespace
    - Truncates to max length
    - Returns "" for empty/whitespace-only values
    """
    if value is None:
        return ""

    value = str(value).strip()

    if len(value) > max_length:
        value = value[:max_length]

    return value
