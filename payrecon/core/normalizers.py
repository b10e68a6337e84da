# payrecon/core/normalizers.py

"""
Data normalization utilities for payer names and payment rows.

Ensures consistent data format regardless of source. Everything here is
pure: the same input always yields the same output, which fingerprints
and alias keys rely on.
"""

from datetime import date, datetime, timezone
from typing import Any
import re
import unicodedata

from payrecon.models import AccountRecord, PayerRecord

# Punctuation and separators replaced by a space before tokenizing
_SEPARATORS = re.compile(r"[.,;:\-_/\\()\[\]{}'\"]")
_WHITESPACE = re.compile(r"\s+")
_PERIOD = re.compile(r"^(\d{4})[-/](\d{1,2})$")


def normalize_name(s: Any) -> str:
    """
    Normalize a payer or account name for comparison.

    - Trim, uppercase
    - Strip diacritics
    - Replace punctuation/separators with a space
    - Collapse whitespace
    """
    if not isinstance(s, str):
        return ""

    s = s.strip().upper()
    s = unicodedata.normalize("NFD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = _SEPARATORS.sub(" ", s)
    s = _WHITESPACE.sub(" ", s).strip()
    return s


def tokenize(normalized: str) -> list[str]:
    """Split a normalized string on whitespace, dropping empty tokens."""
    if not isinstance(normalized, str):
        return []
    return [t for t in normalized.split() if t]


def normalize(text: Any) -> PayerRecord:
    """Normalize and tokenize in one step."""
    normalized = normalize_name(text)
    return PayerRecord(
        raw=text if isinstance(text, str) else "",
        normalized=normalized,
        tokens=tuple(tokenize(normalized)),
    )


def build_payer_raw(*parts: Any) -> str:
    """
    Join optional payer columns into one raw payer string.

    Bank exports often split the payer over two free-text fields.
    """
    cleaned = [str(p).strip() for p in parts if p is not None and str(p).strip()]
    return " ".join(cleaned)


def to_account_record(account_id: Any, display_name: Any) -> AccountRecord:
    """Build an AccountRecord from the accounts source."""
    payer = normalize(display_name)
    return AccountRecord(
        account_id=str(account_id),
        display_name=payer.raw,
        normalized=payer.normalized,
        tokens=payer.tokens,
    )


def parse_amount(amount: Any) -> float | None:
    """
    Parse an amount, returning None when it is missing or malformed.

    Handles:
    - Integers and floats
    - Strings with currency symbols
    - Thousands separators, with "." or "," as decimal separator
    """
    if amount is None or isinstance(amount, bool):
        return None

    if isinstance(amount, (int, float)):
        value = float(amount)
        return value if value == value else None  # NaN

    if not isinstance(amount, str):
        return None

    cleaned = re.sub(r"[^\d.,-]", "", amount)
    if not re.search(r"\d", cleaned):
        return None

    # The right-most separator is the decimal one
    last_dot = cleaned.rfind(".")
    last_comma = cleaned.rfind(",")
    if last_comma > last_dot:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        return float(cleaned)
    except ValueError:
        return None


def normalize_date(d: Any) -> date | None:
    """
    Normalize date to date object.

    Handles:
    - date objects
    - datetime objects
    - ISO strings
    - Unix timestamps (UTC)

    Out-of-range or non-finite timestamps give None.
    """
    if d is None:
        return None

    if isinstance(d, datetime):
        return d.date()

    if isinstance(d, date):
        return d

    if isinstance(d, (int, float)) and not isinstance(d, bool):
        try:
            return datetime.fromtimestamp(d, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(d, str):
        d = d.strip()
        try:
            return datetime.fromisoformat(d.replace('Z', '+00:00')).date()
        except ValueError:
            pass

        formats = [
            '%Y-%m-%d',
            '%d/%m/%Y',
            '%d-%m-%Y',
            '%Y/%m/%d',
        ]
        for fmt in formats:
            try:
                return datetime.strptime(d, fmt).date()
            except ValueError:
                continue

    return None


def normalize_period(period: Any = None, d: Any = None) -> str | None:
    """
    Billing period key (YYYY-MM).

    Taken from an explicit period when it parses, otherwise derived from
    the transaction date.
    """
    if isinstance(period, str):
        match = _PERIOD.match(period.strip())
        if match:
            year, month = int(match.group(1)), int(match.group(2))
            if 1 <= month <= 12:
                return f"{year:04d}-{month:02d}"

    parsed = normalize_date(d)
    if parsed is None:
        return None
    return f"{parsed.year:04d}-{parsed.month:02d}"


def normalize_reference(ref: str | None) -> str:
    """Normalize a free-text payment reference."""
    if not ref or not isinstance(ref, str):
        return ""
    return _WHITESPACE.sub(" ", ref.strip().lower())


def normalize_currency(currency: str | None, default: str) -> str:
    if not currency or not isinstance(currency, str) or not currency.strip():
        return default
    return currency.strip().upper()
