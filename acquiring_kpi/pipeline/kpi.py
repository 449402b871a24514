"""
Per-bucket KPI aggregation: category tallies, rates and top decline reasons.
"""

from __future__ import annotations

from typing import Mapping

import polars as pl

from acquiring_kpi.contracts.records import BucketKPI, DeclineRecord
from acquiring_kpi.contracts.schemas import (
    BUCKET_KPI_SCHEMA,
    BUSINESS_DECLINE,
    DEFAULT_CATEGORY_LIMIT,
    SUCCESS,
    TECHNICAL_DECLINE,
    USER_DECLINE,
)
from acquiring_kpi.pipeline.bucketing import sort_period_keys
from acquiring_kpi.pipeline.classify import DEFAULT_TAXONOMY, ResponseCodeTaxonomy, category_expr
from acquiring_kpi.pipeline.metrics import rate_pct


def top_declines(classified: pl.DataFrame, category: str, limit: int = DEFAULT_CATEGORY_LIMIT) -> tuple[DeclineRecord, ...]:
    """
    Rank (code, description) pairs of one category by count.

    Ties keep first-seen order. `percent` is relative to the category's
    total within this frame, not to the frame's grand total.
    """
    rows = classified.filter(pl.col("category") == category)
    category_total = rows.height
    if category_total == 0:
        return ()
    ranked = (
        rows
        .group_by(["response_code", "response_description"], maintain_order=True)
        .agg(pl.len().alias("count"))
        .sort("count", descending=True, maintain_order=True)
        .head(limit)
    )
    return tuple(
        DeclineRecord(
            code=code,
            description=description,
            count=int(count),
            percent=rate_pct(int(count), category_total),
        )
        for code, description, count in ranked.iter_rows()
    )


def bucket_kpi(
    period: str,
    frame: pl.DataFrame,
    channel: str,
    category_limit: int = DEFAULT_CATEGORY_LIMIT,
    taxonomy: ResponseCodeTaxonomy = DEFAULT_TAXONOMY,
) -> BucketKPI:
    classified = frame.with_columns(category_expr(channel, taxonomy=taxonomy))
    counts = dict(
        classified.group_by("category").agg(pl.len().alias("count")).iter_rows()
    )
    total = classified.height
    success = int(counts.get(SUCCESS, 0))
    business = int(counts.get(BUSINESS_DECLINE, 0))
    user = int(counts.get(USER_DECLINE, 0))
    technical = int(counts.get(TECHNICAL_DECLINE, 0))

    return BucketKPI(
        period=period,
        total=total,
        success_count=success,
        success_rate=rate_pct(success, total),
        business_failures=business,
        business_rate=rate_pct(business, total),
        user_failures=user,
        user_rate=rate_pct(user, total),
        technical_failures=technical,
        technical_rate=rate_pct(technical, total),
        business_declines=top_declines(classified, BUSINESS_DECLINE, category_limit),
        user_declines=top_declines(classified, USER_DECLINE, category_limit),
        technical_declines=top_declines(classified, TECHNICAL_DECLINE, category_limit),
    )


def compute_bucket_kpis(
    buckets: Mapping[str, pl.DataFrame],
    channel: str,
    category_limit: int = DEFAULT_CATEGORY_LIMIT,
    taxonomy: ResponseCodeTaxonomy = DEFAULT_TAXONOMY,
) -> list[BucketKPI]:
    """One BucketKPI per period key, in calendar order."""
    if category_limit <= 0:
        raise ValueError(f"category_limit must be positive, got {category_limit}")
    return [
        bucket_kpi(period, buckets[period], channel, category_limit, taxonomy)
        for period in sort_period_keys(buckets)
    ]


def kpis_to_frame(kpis: list[BucketKPI]) -> pl.DataFrame:
    """Flat KPI table matching BUCKET_KPI_SCHEMA, for export."""
    rows = [{col: getattr(kpi, col) for col in BUCKET_KPI_SCHEMA} for kpi in kpis]
    return pl.DataFrame(rows, schema=BUCKET_KPI_SCHEMA)
