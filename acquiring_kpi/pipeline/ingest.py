"""
Normalize raw ledger rows into the canonical transaction frame.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

import polars as pl

from acquiring_kpi.contracts.schemas import (
    CHANNELS,
    OTHER_CHANNEL,
    RAW_COLUMN_ALIASES,
    TRANSACTION_SCHEMA,
    UNKNOWN_DESCRIPTION,
)
from acquiring_kpi.pipeline.classify import normalize_code
from acquiring_kpi.pipeline.coerce import (
    normalize_brand,
    normalize_channel,
    normalize_currency_code,
    parse_amount,
    parse_date,
    safe_string,
)

logger = logging.getLogger(__name__)

_ALIASES_BY_COLUMN: dict[str, list[str]] = {}
for _alias, _column in RAW_COLUMN_ALIASES.items():
    _ALIASES_BY_COLUMN.setdefault(_column, []).append(_alias)


def raw_field(row: Mapping[str, Any], column: str) -> Any:
    """Look up a ledger column by its canonical name, then by its aliases."""
    value = row.get(column)
    if value is not None and value != "":
        return value
    for alias in _ALIASES_BY_COLUMN.get(column, ()):
        alt = row.get(alias)
        if alt is not None and alt != "":
            return alt
    return value


def normalize_row(row: Mapping[str, Any], default_channel: str | None = None) -> dict[str, Any]:
    raw_channel = safe_string(raw_field(row, "TXN_TYPE"))
    if raw_channel:
        channel = normalize_channel(raw_channel)
    elif default_channel:
        channel = normalize_channel(default_channel)
    else:
        channel = OTHER_CHANNEL

    description = (
        safe_string(raw_field(row, "RESPONSE_REASON"))
        or safe_string(raw_field(row, "RESPONSE_CATEGORY"))
        or UNKNOWN_DESCRIPTION
    )
    return {
        "timestamp": parse_date(raw_field(row, "TRANSACTION_DATE")),
        "channel": channel,
        "response_code": normalize_code(raw_field(row, "RESPONSE_CODE")),
        "response_description": description,
        "card_network": normalize_brand(raw_field(row, "CARD_NETWORK")),
        "merchant_id": safe_string(raw_field(row, "MID")) or None,
        "amount": parse_amount(raw_field(row, "VALUE")),
        "currency": normalize_currency_code(raw_field(row, "CURRENCY")),
        "mcc": safe_string(raw_field(row, "MCC")) or None,
    }


def normalize_rows(rows: Iterable[Mapping[str, Any]], default_channel: str | None = None) -> pl.DataFrame:
    """
    Build a frame matching TRANSACTION_SCHEMA from raw ledger rows.

    Rows whose date does not parse keep a null timestamp; bucketing drops
    them later. `default_channel` fills rows that carry no channel value,
    e.g. a file uploaded as a POS report.
    """
    if default_channel is not None and normalize_channel(default_channel) == OTHER_CHANNEL:
        raise ValueError(f"Unknown channel: {default_channel!r}; expected one of {CHANNELS}")

    records = [normalize_row(row, default_channel) for row in rows]
    df = pl.DataFrame(records, schema=TRANSACTION_SCHEMA)
    undated = df["timestamp"].null_count()
    logger.info("[ingest] normalized %d rows (%d without a parsable date)", df.height, undated)
    return df


def validate_transactions(df: pl.DataFrame) -> None:
    """Raise if df is missing required columns or has wrong types."""
    for col, dtype in TRANSACTION_SCHEMA.items():
        if col not in df.columns:
            raise ValueError(f"Missing required column: {col}")
        actual = df[col].dtype
        if isinstance(dtype, pl.Datetime):
            if not isinstance(actual, pl.Datetime) or actual.time_unit != dtype.time_unit:
                raise TypeError(f"Column '{col}': expected {dtype}, got {actual}")
        elif actual != dtype:
            raise TypeError(f"Column '{col}': expected {dtype}, got {actual}")


def filter_transactions(
    df: pl.DataFrame,
    channel: str | None = None,
    scheme: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> pl.DataFrame:
    """Apply the report filters; None means no restriction on that axis."""
    predicates = []
    if channel is not None:
        predicates.append(pl.col("channel") == normalize_channel(channel))
    if scheme is not None:
        predicates.append(pl.col("card_network") == normalize_brand(scheme))
    if start is not None:
        predicates.append(pl.col("timestamp") >= start)
    if end is not None:
        predicates.append(pl.col("timestamp") <= end)
    if not predicates:
        return df
    return df.filter(*predicates)


def date_range(df: pl.DataFrame) -> tuple[datetime | None, datetime | None]:
    if df.is_empty():
        return None, None
    ts = df["timestamp"]
    return ts.min(), ts.max()
