"""
Assign transactions to calendar buckets and order period keys.

Period key shapes:
    daily / custom   YYYY-MM-DD
    weekly           YYYY-Www   (ISO-8601 week and week-owning year)
    monthly          YYYY-MM
    quarterly        YYYY-Qn
    yearly           YYYY
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

import polars as pl

from acquiring_kpi.contracts.schemas import GRANULARITIES

logger = logging.getLogger(__name__)

# Checked in this order; monthly must come after daily and weekly.
_KEY_PATTERNS = [
    re.compile(r"^(\d{4})-(\d{2})-(\d{2})$"),
    re.compile(r"^(\d{4})-W(\d{2})$"),
    re.compile(r"^(\d{4})-Q(\d)$"),
    re.compile(r"^(\d{4})-(\d{2})$"),
    re.compile(r"^(\d{4})$"),
]


def check_granularity(granularity: str) -> str:
    value = (granularity or "").strip().lower()
    if value not in GRANULARITIES:
        raise ValueError(f"Unknown granularity: {granularity!r}; expected one of {GRANULARITIES}")
    return value


def period_key_expr(granularity: str, ts_col: str = "timestamp") -> pl.Expr:
    """Polars expression producing the period key for each timestamp."""
    ts = pl.col(ts_col)
    granularity = check_granularity(granularity)
    if granularity in ("daily", "custom"):
        key = ts.dt.strftime("%Y-%m-%d")
    elif granularity == "weekly":
        # ISO year and week are those of the Thursday in the same week
        key = pl.format(
            "{}-W{}",
            ts.dt.iso_year(),
            ts.dt.week().cast(pl.Utf8).str.zfill(2),
        )
    elif granularity == "monthly":
        key = ts.dt.strftime("%Y-%m")
    elif granularity == "quarterly":
        key = pl.format("{}-Q{}", ts.dt.year(), ts.dt.quarter())
    else:
        key = ts.dt.strftime("%Y")
    return key.alias("period")


def with_period(df: pl.DataFrame, granularity: str, selected_year: int | None = None) -> pl.DataFrame:
    """Drop undated rows, apply the yearly filter, and add a `period` column."""
    granularity = check_granularity(granularity)
    dated = df.filter(pl.col("timestamp").is_not_null())
    if granularity == "yearly" and selected_year:
        dated = dated.filter(pl.col("timestamp").dt.year() == selected_year)
    return dated.with_columns(period_key_expr(granularity))


def assign_buckets(
    df: pl.DataFrame,
    granularity: str,
    selected_year: int | None = None,
) -> dict[str, pl.DataFrame]:
    """
    Group transactions by period key.

    Returns a dict whose keys are in calendar order; each value keeps the
    original row order of its transactions. Rows without a timestamp are
    skipped, as are rows outside `selected_year` for yearly buckets.
    """
    keyed = with_period(df, granularity, selected_year)
    groups = {period: frame for (period,), frame in keyed.group_by("period", maintain_order=True)}
    dropped = df.height - keyed.height
    if dropped:
        logger.debug("[bucketing] %d rows left out of %s buckets", dropped, granularity)
    return {key: groups[key] for key in sort_period_keys(groups)}


def parse_period_key(key: str, strict: bool = False) -> tuple[int, ...]:
    """
    Numeric components of a period key.

    An unrecognised key parses to (0,), or raises ValueError with `strict`.
    """
    for pattern in _KEY_PATTERNS:
        match = pattern.match(key)
        if match:
            return tuple(int(part) for part in match.groups())
    if strict:
        raise ValueError(f"Malformed period key: {key!r}")
    return (0,)


def sort_period_keys(keys: Iterable[str]) -> list[str]:
    """Sort period keys by calendar order. Missing trailing components count as 0."""

    def _key(value: str) -> tuple[int, int, int]:
        parts = parse_period_key(value)
        return tuple(parts + (0,) * (3 - len(parts)))  # type: ignore[return-value]

    return sorted(keys, key=_key)
