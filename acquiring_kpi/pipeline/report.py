"""
End-to-end time-bucketed report: normalize -> bucket -> classify/aggregate
-> compare -> summarize.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

import polars as pl

from acquiring_kpi.analytics.comparison import compare
from acquiring_kpi.analytics.summary import executive_summary
from acquiring_kpi.contracts.records import EmptyDatasetError, KpiReport
from acquiring_kpi.contracts.schemas import CHANNELS, DEFAULT_CATEGORY_LIMIT
from acquiring_kpi.pipeline.bucketing import assign_buckets, check_granularity
from acquiring_kpi.pipeline.classify import DEFAULT_TAXONOMY, ResponseCodeTaxonomy
from acquiring_kpi.pipeline.ingest import date_range, filter_transactions, normalize_rows
from acquiring_kpi.pipeline.kpi import compute_bucket_kpis

logger = logging.getLogger(__name__)


def report_from_frame(
    transactions: pl.DataFrame,
    channel: str,
    granularity: str,
    selected_year: int | None = None,
    scheme: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    category_limit: int | None = None,
    taxonomy: ResponseCodeTaxonomy = DEFAULT_TAXONOMY,
) -> KpiReport:
    """Build the report from an already-normalized transaction frame."""
    channel = channel.upper()
    if channel not in CHANNELS:
        raise ValueError(f"Unknown channel: {channel!r}; expected one of {CHANNELS}")
    granularity = check_granularity(granularity)
    if transactions.is_empty():
        raise EmptyDatasetError("No transactions to report on")

    filtered = filter_transactions(transactions, channel=channel, scheme=scheme, start=start, end=end)
    buckets = assign_buckets(filtered, granularity, selected_year)
    rows_bucketed = sum(frame.height for frame in buckets.values())
    if rows_bucketed == 0:
        raise EmptyDatasetError(
            f"No valid {channel} transactions with a parsable date match the selected filters"
        )

    kpis = compute_bucket_kpis(
        buckets,
        channel,
        category_limit=category_limit or DEFAULT_CATEGORY_LIMIT,
        taxonomy=taxonomy,
    )
    comparisons = compare(kpis)
    summary = executive_summary(channel, granularity, kpis, comparisons)
    logger.info(
        "[report] %s %s: %d buckets from %d/%d rows",
        channel, granularity, len(kpis), rows_bucketed, transactions.height,
    )
    return KpiReport(
        channel=channel,
        granularity=granularity,
        buckets=tuple(kpis),
        comparisons=tuple(comparisons),
        executive_summary=summary,
        date_range=date_range(filtered.filter(pl.col("timestamp").is_not_null())),
        rows_loaded=transactions.height,
        rows_bucketed=rows_bucketed,
    )


def build_kpi_report(
    rows: Iterable[Mapping[str, Any]],
    channel: str,
    granularity: str,
    selected_year: int | None = None,
    scheme: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    category_limit: int | None = None,
    taxonomy: ResponseCodeTaxonomy = DEFAULT_TAXONOMY,
) -> KpiReport:
    """
    Run the full time-bucketed pipeline over raw ledger rows.

    Rows without a channel value are attributed to `channel`, the way an
    upload is tagged with its report type. Raises EmptyDatasetError when
    there are no rows or none survive normalization and filtering.
    """
    transactions = normalize_rows(rows, default_channel=channel)
    return report_from_frame(
        transactions,
        channel,
        granularity,
        selected_year=selected_year,
        scheme=scheme,
        start=start,
        end=end,
        category_limit=category_limit,
        taxonomy=taxonomy,
    )
