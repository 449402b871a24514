"""
Response-code classification.

Every non-success response code falls into exactly one decline category.
Precedence: success sentinel, channel-specific user codes, technical
dictionary, business (everything else).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

import polars as pl

from acquiring_kpi.contracts.schemas import (
    BUSINESS_CODE_DICTIONARY,
    BUSINESS_DECLINE,
    IPG_USER_DECLINE_CODES,
    POS_ATM_USER_DECLINE_CODES,
    SUCCESS,
    SUCCESS_CODE,
    TECHNICAL_CODE_DICTIONARY,
    TECHNICAL_DECLINE,
    USER_DECLINE,
)
from acquiring_kpi.pipeline.coerce import safe_string

_LEADING_ZEROS_RE = re.compile(r"^0+(?=\d{2}$)")


@dataclass(frozen=True)
class ResponseCodeTaxonomy:
    """Immutable code tables consulted by the classifier."""

    ipg_user_codes: frozenset[str]
    pos_atm_user_codes: frozenset[str]
    technical_codes: Mapping[str, tuple[str, str]]
    business_codes: Mapping[str, tuple[str, str]]

    def user_codes(self, channel: str) -> frozenset[str]:
        if channel == "IPG":
            return self.ipg_user_codes
        if channel in ("POS", "ATM"):
            return self.pos_atm_user_codes
        return frozenset()

    def describe(self, code: str) -> tuple[str, str] | None:
        """Return (normalized description, typical cause) for a known code."""
        return self.business_codes.get(code) or self.technical_codes.get(code)

    def decline_label(self, code: str, description: str) -> str:
        """Code plus the dictionary wording when known, else the ledger's own text."""
        known = self.describe(code)
        return f"{code} {known[0] if known else description}"


DEFAULT_TAXONOMY = ResponseCodeTaxonomy(
    ipg_user_codes=IPG_USER_DECLINE_CODES,
    pos_atm_user_codes=POS_ATM_USER_DECLINE_CODES,
    technical_codes=TECHNICAL_CODE_DICTIONARY,
    business_codes=BUSINESS_CODE_DICTIONARY,
)


def normalize_code(code: Any) -> str:
    """
    Canonical form of a response code.

    Trims and upper-cases; single-digit numeric codes are padded to two
    digits and surplus leading zeros are stripped down to two digits, so
    "0", "00" and "000" all become "00". Applying it twice is a no-op.
    """
    if isinstance(code, float) and code.is_integer():
        code = int(code)
    normalized = safe_string(code).upper()
    if normalized.isdigit():
        if len(normalized) == 1:
            normalized = normalized.zfill(2)
        elif len(normalized) > 2:
            normalized = _LEADING_ZEROS_RE.sub("", normalized)
    return normalized


def is_success(code: Any) -> bool:
    return normalize_code(code) == SUCCESS_CODE


def classify(channel: str, raw_code: Any, taxonomy: ResponseCodeTaxonomy = DEFAULT_TAXONOMY) -> str:
    code = normalize_code(raw_code)
    if code == SUCCESS_CODE:
        return SUCCESS
    if code in taxonomy.user_codes(channel):
        return USER_DECLINE
    if code in taxonomy.technical_codes:
        return TECHNICAL_DECLINE
    return BUSINESS_DECLINE


def category_expr(
    channel: str,
    code_col: str = "response_code",
    taxonomy: ResponseCodeTaxonomy = DEFAULT_TAXONOMY,
) -> pl.Expr:
    """Vectorised `classify` over an already-normalized code column."""
    code = pl.col(code_col)
    expr = pl.when(code == SUCCESS_CODE).then(pl.lit(SUCCESS))
    user_codes = sorted(taxonomy.user_codes(channel))
    if user_codes:
        expr = expr.when(code.is_in(user_codes)).then(pl.lit(USER_DECLINE))
    technical_codes = sorted(taxonomy.technical_codes)
    if technical_codes:
        expr = expr.when(code.is_in(technical_codes)).then(pl.lit(TECHNICAL_DECLINE))
    return expr.otherwise(pl.lit(BUSINESS_DECLINE)).alias("category")
