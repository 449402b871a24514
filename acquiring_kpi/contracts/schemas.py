"""
Data contracts for the Acquiring KPI Engine.

These schemas and constants are shared by every layer.

Layer flow: raw ledger rows -> normalized transactions -> period buckets
-> bucket KPIs -> comparisons / executive summary. The cross-sectional
rollup reads raw ledger rows directly.
"""

import os
from datetime import datetime
from types import MappingProxyType

import polars as pl


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: {raw}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


# =============================================================================
# LAYER 1: Raw ledger rows (external file parser -> core)
# =============================================================================

RAW_LEDGER_COLUMNS = [
    "CARD_NETWORK",
    "TXN_TYPE",            # POS / ATM / IPG (free text, substring matched)
    "TRANSACTION_DATE",    # spreadsheet serial or date string
    "MID",
    "MERCHANT_NAME",
    "VALUE",               # amount, may carry thousands separators
    "RRNO",
    "MCC",
    "CURRENCY",            # ISO 4217 numeric, possibly unpadded
    "RESPONSE_CODE",
    "RESPONSE_REASON",
    "RESPONSE_CATEGORY",   # Business / Technical / User
]

# snake_case aliases accepted by the normalizer, mapped onto ledger names
RAW_COLUMN_ALIASES = {
    "transaction_datetime": "TRANSACTION_DATE",
    "transaction_date": "TRANSACTION_DATE",
    "channel": "TXN_TYPE",
    "txn_type": "TXN_TYPE",
    "response_code": "RESPONSE_CODE",
    "response_description": "RESPONSE_REASON",
    "response_reason": "RESPONSE_REASON",
    "response_category": "RESPONSE_CATEGORY",
    "card_network": "CARD_NETWORK",
    "mid": "MID",
    "merchant_id": "MID",
    "amount": "VALUE",
    "value": "VALUE",
    "currency": "CURRENCY",
    "mcc": "MCC",
}


# =============================================================================
# LAYER 2: Normalized transactions (Normalizer -> Bucketer / Classifier)
# =============================================================================

TRANSACTION_SCHEMA = {
    "timestamp": pl.Datetime("us"),    # null when the raw date did not parse
    "channel": pl.Utf8,                # POS, ATM, IPG, OTHER
    "response_code": pl.Utf8,          # normalized, see classify.normalize_code
    "response_description": pl.Utf8,   # "Unknown" when absent
    "card_network": pl.Utf8,           # Visa, MasterCard, AMEX, Other
    "merchant_id": pl.Utf8,            # nullable
    "amount": pl.Float64,              # 0.0 when unparsable
    "currency": pl.Utf8,               # 3-digit numeric code, "UNKNOWN" when absent
    "mcc": pl.Utf8,                    # nullable
}

# Flat export layout for BucketKPI rows (decline lists excluded)
BUCKET_KPI_SCHEMA = {
    "period": pl.Utf8,
    "total": pl.Int64,
    "success_count": pl.Int64,
    "success_rate": pl.Float64,
    "business_failures": pl.Int64,
    "business_rate": pl.Float64,
    "user_failures": pl.Int64,
    "user_rate": pl.Float64,
    "technical_failures": pl.Int64,
    "technical_rate": pl.Float64,
}


# =============================================================================
# CONSTANTS
# =============================================================================

CHANNELS = ("POS", "ATM", "IPG")
OTHER_CHANNEL = "OTHER"

BRANDS = ("Visa", "MasterCard", "AMEX")
OTHER_BRAND = "Other"

FAILURE_CATEGORIES = ("Business", "Technical", "User", "Unknown")

# Decline categories assigned by the classifier
SUCCESS = "success"
BUSINESS_DECLINE = "business_decline"
USER_DECLINE = "user_decline"
TECHNICAL_DECLINE = "technical_decline"
DECLINE_CATEGORIES = (BUSINESS_DECLINE, USER_DECLINE, TECHNICAL_DECLINE)

SUCCESS_CODE = "00"
UNKNOWN_DESCRIPTION = "Unknown"
UNKNOWN_REASON = "Unknown Reason"
UNKNOWN_CURRENCY = "UNKNOWN"

GRANULARITIES = ("daily", "weekly", "monthly", "quarterly", "yearly", "custom")

# Spreadsheet serial day 0
SERIAL_DATE_EPOCH = datetime(1899, 12, 30)

DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d-%b-%Y",
    "%d %b %Y",
)

# Currency handling for the cross-sectional rollup
LOCAL_CURRENCY = "BTN"
CURRENCIES = (LOCAL_CURRENCY, "USD", "INR")
POS_ATM_CURRENCY_CODES = frozenset({"064", "524"})
IPG_CURRENCY_CODES = MappingProxyType({"840": "USD", "356": "INR"})

# Merchant discount rate per scheme, used for revenue figures
MDR_RATES = MappingProxyType({
    "MasterCard": 0.015,
    "Visa": 0.015,
    "AMEX": 0.02,
    "Other": 0.015,
})
SCHEMES = ("MasterCard", "Visa", "AMEX", "Other")
FOCUS_SCHEME = "MasterCard"
TOP_SECTORS = 7

DEFAULT_CATEGORY_LIMIT = _env_int("ACQ_KPI_CATEGORY_LIMIT", 10)
DEFAULT_BATCH_SIZE = _env_int("ACQ_KPI_BATCH_SIZE", 5000)
TOP_FAILURE_REASONS = 10


# =============================================================================
# RESPONSE CODE DICTIONARIES (ISO 8583 field 39)
# =============================================================================

USER_DECLINE_CODES = frozenset({"13", "14", "51", "54", "55", "61", "65", "78", "N7"})
IPG_USER_DECLINE_CODES = USER_DECLINE_CODES
POS_ATM_USER_DECLINE_CODES = USER_DECLINE_CODES

TECHNICAL_CODE_DICTIONARY = MappingProxyType({
    "06": ("Error", "Processing error at the issuer or switch."),
    "19": ("Re-enter transaction", "Transient processing condition; retry advised."),
    "22": ("Suspected malfunction", "Terminal or host malfunction detected."),
    "28": ("File temporarily unavailable", "Issuer file update in progress."),
    "30": ("Format error", "Message format rejected by the receiving host."),
    "68": ("Response received too late", "Issuer response exceeded the timeout window."),
    "90": ("Cutoff in progress", "Issuer end-of-day cutoff underway."),
    "91": ("Issuer or switch inoperative", "Issuer host unavailable or unreachable."),
    "92": ("Routing error", "Financial institution could not be found for routing."),
    "94": ("Duplicate transmission", "Duplicate message detected by the host."),
    "96": ("System malfunction", "Switch or host system error."),
})

BUSINESS_CODE_DICTIONARY = MappingProxyType({
    "05": ("Do not honour", "Issuer authorization and risk policies."),
    "12": ("Invalid transaction", "Transaction type not permitted for the card."),
    "41": ("Lost card", "Card reported lost by the cardholder."),
    "43": ("Stolen card", "Card reported stolen by the cardholder."),
    "57": ("Transaction not permitted to cardholder", "Card product restrictions."),
    "58": ("Transaction not permitted to terminal", "Terminal or merchant restrictions."),
    "59": ("Suspected fraud", "Issuer fraud screening triggered."),
    "62": ("Restricted card", "Card restricted by the issuer."),
    "75": ("PIN tries exceeded", "Allowable PIN attempts exceeded."),
    "93": ("Violation of law", "Transaction cannot be completed for legal reasons."),
})

# Phrases used by the executive summary for user-decline drivers
USER_REASON_PHRASES = MappingProxyType({
    "51": "customer liquidity constraints (insufficient funds)",
    "61": "customer liquidity constraints (limit controls)",
    "54": "expired card activity",
    "13": "invalid transaction parameters",
    "14": "invalid card details",
    "55": "PIN verification issues",
    "65": "withdrawal or usage limits",
    "78": "blocked or inactive card status",
    "N7": "CVV validation failure",
})
