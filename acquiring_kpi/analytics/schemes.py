"""
Card-scheme analytics for POS/ATM acquiring: scheme shares, MDR revenue,
market-share trends, merchant footprint and MCC sector penetration of a
focus scheme.
"""

from __future__ import annotations

from datetime import datetime

import polars as pl

from acquiring_kpi.contracts.records import (
    MarketSharePoint,
    MerchantTrendPoint,
    SchemeAggregate,
    SchemeAnalytics,
    SectorDistribution,
    TrendPoint,
    YoYPoint,
)
from acquiring_kpi.contracts.schemas import FOCUS_SCHEME, MDR_RATES, SCHEMES, TOP_SECTORS
from acquiring_kpi.pipeline.bucketing import check_granularity, period_key_expr, sort_period_keys
from acquiring_kpi.pipeline.metrics import growth_pct, round2, safe_pct

SCHEME_CHANNELS = {
    "POS": ("POS",),
    "ATM": ("ATM",),
    "POS_ATM": ("POS", "ATM"),
}
SCHEME_GRANULARITIES = ("monthly", "quarterly", "yearly")


def sector_expr(mcc_col: str = "mcc") -> pl.Expr:
    """Map merchant category codes onto reporting sectors."""
    mcc = pl.col(mcc_col).str.replace_all(r"\D", "").cast(pl.Int64, strict=False)
    return (
        pl.when(mcc.is_between(3500, 3999)).then(pl.lit("Hotels"))
          .when(mcc.is_between(3000, 3350) | mcc.is_in([4511, 4722, 4789])).then(pl.lit("Tourism"))
          .when(mcc.is_in([5812, 5813, 5814, 5815])).then(pl.lit("Restaurants"))
          .when(mcc.is_in([4814, 4816, 4829, 5968, 5734, 7995])).then(pl.lit("E-commerce"))
          .when(mcc.is_between(5000, 5999)).then(pl.lit("Retail"))
          .when(mcc.is_between(6000, 6999)).then(pl.lit("Services"))
          .otherwise(pl.lit("Others"))
          .alias("sector")
    )


def revenue_expr() -> pl.Expr:
    return (
        pl.col("amount")
        * pl.col("card_network").replace_strict(
            dict(MDR_RATES), default=MDR_RATES["Other"], return_dtype=pl.Float64
        )
    ).alias("revenue")


def _scheme_stats(frame: pl.DataFrame, by: list[str]) -> pl.DataFrame:
    return frame.group_by(by, maintain_order=True).agg([
        pl.len().alias("count"),
        pl.col("amount").sum().alias("volume"),
        pl.col("revenue").sum().alias("revenue"),
    ])


def _share_points(period_stats: pl.DataFrame, periods: list[str], metric: str) -> tuple[MarketSharePoint, ...]:
    points = []
    for period in periods:
        rows = period_stats.filter(pl.col("period") == period)
        values = dict(zip(rows["card_network"].to_list(), rows[metric].to_list()))
        total = sum(values.values())
        points.append(MarketSharePoint(
            period=period,
            shares={scheme: safe_pct(values.get(scheme, 0), total) for scheme in SCHEMES},
        ))
    return tuple(points)


def scheme_analytics(
    transactions: pl.DataFrame,
    channel: str = "POS_ATM",
    granularity: str = "monthly",
    start: datetime | None = None,
    end: datetime | None = None,
    focus_scheme: str = FOCUS_SCHEME,
) -> SchemeAnalytics:
    if channel not in SCHEME_CHANNELS:
        raise ValueError(f"Unknown scheme channel filter: {channel!r}; expected one of {tuple(SCHEME_CHANNELS)}")
    granularity = check_granularity(granularity)
    if granularity not in SCHEME_GRANULARITIES:
        raise ValueError(f"Scheme analytics supports {SCHEME_GRANULARITIES}, got {granularity!r}")

    predicates = [
        pl.col("timestamp").is_not_null(),
        pl.col("channel").is_in(list(SCHEME_CHANNELS[channel])),
    ]
    if start is not None:
        predicates.append(pl.col("timestamp") >= start)
    if end is not None:
        predicates.append(pl.col("timestamp") <= end)

    df = (
        transactions
        .filter(*predicates)
        .with_columns([revenue_expr(), period_key_expr(granularity), sector_expr()])
    )

    # ---- Scheme totals ----
    totals = {row["card_network"]: row for row in _scheme_stats(df, ["card_network"]).iter_rows(named=True)}
    total_count = df.height
    total_volume = float(df["amount"].sum())
    total_revenue = float(df["revenue"].sum())

    by_scheme = tuple(
        SchemeAggregate(
            scheme=scheme,
            count=int(totals.get(scheme, {}).get("count", 0)),
            volume=float(totals.get(scheme, {}).get("volume", 0.0)),
            revenue=float(totals.get(scheme, {}).get("revenue", 0.0)),
            share_count=round2(safe_pct(totals.get(scheme, {}).get("count", 0), total_count)),
            share_volume=round2(safe_pct(totals.get(scheme, {}).get("volume", 0.0), total_volume)),
            share_revenue=round2(safe_pct(totals.get(scheme, {}).get("revenue", 0.0), total_revenue)),
        )
        for scheme in SCHEMES
    )
    focus = next(
        (agg for agg in by_scheme if agg.scheme == focus_scheme),
        SchemeAggregate(focus_scheme, 0, 0.0, 0.0, 0.0, 0.0, 0.0),
    )

    # ---- Period trends ----
    period_stats = _scheme_stats(df, ["period", "card_network"])
    periods = sort_period_keys(period_stats["period"].unique().to_list())
    focus_by_period = {
        row["period"]: row
        for row in period_stats.filter(pl.col("card_network") == focus_scheme).iter_rows(named=True)
    }
    trend = tuple(
        TrendPoint(
            period=period,
            count=int(focus_by_period.get(period, {}).get("count", 0)),
            volume=float(focus_by_period.get(period, {}).get("volume", 0.0)),
        )
        for period in periods
    )

    # ---- Focus-scheme merchants and year over year ----
    focus_df = df.filter(pl.col("card_network") == focus_scheme)
    with_mid = focus_df.filter(pl.col("merchant_id").is_not_null())
    merchants_by_period = dict(
        with_mid.group_by("period").agg(pl.col("merchant_id").n_unique()).iter_rows()
    )
    merchant_trend = tuple(
        MerchantTrendPoint(period=period, merchants=int(merchants_by_period.get(period, 0)))
        for period in periods
    )

    yearly = (
        focus_df
        .group_by(pl.col("timestamp").dt.year().alias("year"))
        .agg([pl.len().alias("count"), pl.col("amount").sum().alias("volume")])
        .sort("year")
    )
    yoy = []
    prev = None
    for year, count, volume in yearly.iter_rows():
        yoy.append(YoYPoint(
            year=int(year),
            count=int(count),
            volume=float(volume),
            count_growth=growth_pct(count, prev[0]) if prev else 0.0,
            volume_growth=growth_pct(volume, prev[1]) if prev else 0.0,
        ))
        prev = (count, volume)

    # ---- Sector penetration ----
    sector_totals = (
        df.group_by("sector", maintain_order=True)
        .agg(pl.col("amount").sum().alias("total_volume"))
        .with_row_index("first_seen")
    )
    sector_focus = focus_df.group_by("sector").agg([
        pl.col("amount").sum().alias("volume"),
        pl.col("merchant_id").drop_nulls().n_unique().alias("merchant_count"),
    ])
    sectors_df = (
        sector_totals
        .join(sector_focus, on="sector", how="left")
        .with_columns(pl.col("volume").fill_null(0.0), pl.col("merchant_count").fill_null(0))
        .sort(["volume", "first_seen"], descending=[True, False])
    )
    sectors = tuple(
        SectorDistribution(
            sector=row["sector"],
            merchant_count=int(row["merchant_count"]),
            volume=float(row["volume"]),
            penetration=safe_pct(row["volume"], row["total_volume"]),
        )
        for row in sectors_df.iter_rows(named=True)
    )

    ts = df["timestamp"]
    return SchemeAnalytics(
        focus_scheme=focus_scheme,
        date_range=(ts.min(), ts.max()) if total_count else (None, None),
        total_count=total_count,
        total_volume=total_volume,
        total_revenue=total_revenue,
        focus=focus,
        by_scheme=by_scheme,
        trend=trend,
        share_trend_count=_share_points(period_stats, periods, "count"),
        share_trend_volume=_share_points(period_stats, periods, "volume"),
        yoy=tuple(yoy),
        merchant_total=with_mid["merchant_id"].n_unique(),
        merchant_trend=merchant_trend,
        sectors=sectors,
        top_sectors=sectors[:TOP_SECTORS],
    )
