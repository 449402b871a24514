"""
Field coercion for loosely-typed ledger values.

Spreadsheet exports mix numbers and strings in the same column: dates arrive
as serial day counts or formatted text, amounts carry thousands separators,
currency codes lose their leading zeros. Each helper here has one explicit
fallback and never raises on bad data.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta
from typing import Any

from acquiring_kpi.contracts.schemas import (
    DATE_FORMATS,
    OTHER_BRAND,
    OTHER_CHANNEL,
    SERIAL_DATE_EPOCH,
    UNKNOWN_CURRENCY,
)

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")


def safe_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _from_serial(serial: float) -> datetime | None:
    if not math.isfinite(serial):
        return None
    try:
        # serial × 86400 × 1000 ms past the epoch, kept at ms resolution
        return SERIAL_DATE_EPOCH + timedelta(milliseconds=round(serial * 86_400_000))
    except OverflowError:
        return None


def parse_date(value: Any) -> datetime | None:
    """Coerce a raw date cell to a naive datetime, or None when it does not parse."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, (int, float)):
        return _from_serial(float(value))

    text = safe_string(value)
    if not text:
        return None
    if _NUMERIC_RE.match(text):
        return _from_serial(float(text))
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    cleaned = safe_string(value).replace(",", "")
    try:
        parsed = float(cleaned)
    except ValueError:
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def normalize_channel(value: Any) -> str:
    raw = safe_string(value).upper()
    if "POS" in raw:
        return "POS"
    if "ATM" in raw:
        return "ATM"
    if "IPG" in raw or "ECOM" in raw or "E-COM" in raw or "ONLINE" in raw:
        return "IPG"
    return OTHER_CHANNEL


def normalize_brand(value: Any) -> str:
    raw = safe_string(value).upper()
    if not raw:
        return OTHER_BRAND
    if "VISA" in raw:
        return "Visa"
    if "MASTER" in raw:
        return "MasterCard"
    if "AMEX" in raw or "AMERICAN" in raw:
        return "AMEX"
    return OTHER_BRAND


def normalize_currency_code(value: Any) -> str:
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        value = int(value)
    raw = safe_string(value)
    if not raw:
        return UNKNOWN_CURRENCY
    return raw.zfill(3)


def normalize_failure_category(value: Any) -> str:
    raw = safe_string(value).upper()
    if not raw:
        return "Unknown"
    if "BUSINESS" in raw:
        return "Business"
    if "TECH" in raw:
        return "Technical"
    if "USER" in raw or "CARDHOLDER" in raw:
        return "User"
    return "Unknown"
