"""Total extraction helpers for untyped vendor JSON.

Every helper accepts whatever the vendor sent and returns ``None`` instead of
raising when a value is missing or has an unexpected shape.
"""
from __future__ import annotations

import math
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo

from dateutil import parser

__all__ = [
    "as_record",
    "ensure_array",
    "pick_string",
    "pick_number",
    "pick_numeric_string",
    "to_numeric_string",
    "to_decimal",
    "pick_boolean",
    "parse_date",
    "parse_partner_date",
    "product_sku_from_partner_sku",
    "is_store_reference_candidate",
    "split_store_reference",
    "normalize_order_code",
    "normalize_bearer_token",
    "max_date",
    "max_number",
]

TRUE_TOKENS = frozenset({"true", "t", "yes", "y", "sim"})
FALSE_TOKENS = frozenset({"false", "f", "no", "n", "nao", "não"})

_DIGITS = re.compile(r"^\d+$")
_SIGNED_INT = re.compile(r"^[+-]?\d+$")
_SKU_SEPARATOR = re.compile(r"[-_]")
_TRAILING_DIGITS = re.compile(r"(\d+)\s*$")
_PARTNER_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}$")
_STORE_REFERENCE = re.compile(r"^([^\[\]]+)\[([^\[\]]+)\]$")

Number = int | float


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_number(raw: str) -> Number | None:
    text = raw.strip()
    if not text:
        return None
    if _SIGNED_INT.match(text):
        return int(text)
    try:
        parsed = float(text)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def as_record(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def ensure_array(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []


def pick_string(obj: Mapping[str, Any], key: str) -> str | None:
    value = obj.get(key)
    if value is None:
        return None
    text = _stringify(value).strip()
    return text or None


def pick_number(obj: Mapping[str, Any], key: str) -> Number | None:
    """Return a finite number for ``key``; numeric strings are parsed."""

    value = obj.get(key)
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    return _parse_number(str(value))


def pick_numeric_string(obj: Mapping[str, Any], key: str) -> str | None:
    """Return the value for ``key`` only when it is made of digits."""

    text = pick_string(obj, key)
    if text is None or isinstance(obj.get(key), bool):
        return None
    return text if _DIGITS.match(text) else None


def to_numeric_string(value: Number | str | None) -> str | None:
    """Parse and re-stringify so decimals are stored in one canonical form.

    ``"12.50"`` becomes ``"12.5"`` and ``10.0`` becomes ``"10"``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number: Number | None = value if math.isfinite(value) else None
    else:
        number = _parse_number(str(value))
    if number is None:
        return None
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return repr(number) if isinstance(number, float) else str(number)


def to_decimal(value: Number | str | None) -> Decimal | None:
    text = to_numeric_string(value)
    if text is None:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def pick_boolean(value: Any) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value > 0 if math.isfinite(value) else None
    text = str(value).strip().lower()
    if not text:
        return None
    if text in TRUE_TOKENS:
        return True
    if text in FALSE_TOKENS:
        return False
    number = _parse_number(text)
    return None if number is None else number > 0


def parse_date(value: str | None, *, tz: ZoneInfo | None = None) -> datetime | None:
    """Parse ``value`` into an aware datetime; naive values get ``tz``."""

    if not value or not value.strip():
        return None
    try:
        parsed = parser.parse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo:
        return parsed
    if tz is None:
        from freight_sync.common.date_utils import get_timezone

        tz = get_timezone()
    return parsed.replace(tzinfo=tz)


def parse_partner_date(value: str | None, *, tz: ZoneInfo | None = None) -> datetime | None:
    """Parse vendor dates, which often arrive as ``"YYYY-MM-DD HH:MM:SS"``."""

    if not value:
        return None
    text = value.strip()
    if not text:
        return None
    if _PARTNER_DATETIME.match(text):
        text = re.sub(r"\s+", "T", text, count=1)
    return parse_date(text, tz=tz)


def product_sku_from_partner_sku(partner_sku: str | None) -> str | None:
    """Return the numeric prefix of ``"253-1657"``-style SKUs (``"253"``)."""

    if not partner_sku:
        return None
    prefix = _SKU_SEPARATOR.split(partner_sku, maxsplit=1)[0].strip()
    return prefix if _DIGITS.match(prefix) else None


def is_store_reference_candidate(partner_sku: str | None) -> bool:
    """Large separator-free integers are store references rather than SKUs."""

    if not partner_sku or _SKU_SEPARATOR.search(partner_sku):
        return False
    text = partner_sku.strip()
    return bool(_DIGITS.match(text)) and int(text) > 1000


def split_store_reference(value: str | None) -> tuple[str | None, str | None]:
    """Split ``"45145[160151]"`` into ``("45145", "160151")``.

    Values without the bracket suffix are a bare store reference.
    """

    text = (value or "").strip()
    if not text:
        return None, None
    match = _STORE_REFERENCE.match(text)
    if not match:
        return text, None
    return match.group(1).strip() or None, match.group(2).strip() or None


def normalize_order_code(value: str | None) -> str | None:
    if not value:
        return None
    text = value.strip()
    if not text:
        return None
    match = _TRAILING_DIGITS.search(text)
    return match.group(1) if match else text


def normalize_bearer_token(value: str) -> str:
    trimmed = value.strip()
    if trimmed.lower().startswith("bearer "):
        return trimmed[len("bearer ") :].strip()
    return trimmed


def max_date(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return a if a >= b else b


def max_number(a: Number | None, b: Number | None) -> Number | None:
    if a is None:
        return b
    if b is None:
        return a
    return a if a >= b else b
