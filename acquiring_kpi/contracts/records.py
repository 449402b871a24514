"""Output records passed from the core to report and export collaborators."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping

from acquiring_kpi.contracts.schemas import BUSINESS_DECLINE, TECHNICAL_DECLINE, USER_DECLINE


class EmptyDatasetError(ValueError):
    """Raised when an upload has no rows, or no rows that survive normalization."""


# =============================================================================
# Time-bucketed KPIs
# =============================================================================

@dataclass(frozen=True)
class DeclineRecord:
    code: str
    description: str
    count: int
    percent: float  # share within its own category in the bucket


@dataclass(frozen=True)
class BucketKPI:
    """KPIs for one period key. Rates are percentages rounded to 2 decimals."""

    period: str
    total: int
    success_count: int
    success_rate: float
    business_failures: int
    business_rate: float
    user_failures: int
    user_rate: float
    technical_failures: int
    technical_rate: float
    business_declines: tuple[DeclineRecord, ...] = ()
    user_declines: tuple[DeclineRecord, ...] = ()
    technical_declines: tuple[DeclineRecord, ...] = ()

    def declines_for(self, category: str) -> tuple[DeclineRecord, ...]:
        if category == BUSINESS_DECLINE:
            return self.business_declines
        if category == USER_DECLINE:
            return self.user_declines
        if category == TECHNICAL_DECLINE:
            return self.technical_declines
        raise ValueError(f"Unknown decline category: {category}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ComparisonResult:
    from_period: str
    to_period: str
    success_rate_change: float
    business_change: int
    user_change: int
    technical_change: int
    top_user_decline_reason: str | None = None
    insights: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class KpiReport:
    channel: str
    granularity: str
    buckets: tuple[BucketKPI, ...]
    comparisons: tuple[ComparisonResult, ...]
    executive_summary: str
    date_range: tuple[datetime | None, datetime | None]
    rows_loaded: int
    rows_bucketed: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Cross-sectional rollup
# =============================================================================

@dataclass(frozen=True)
class RollupProgress:
    rows_loaded: int
    batches: int


@dataclass(frozen=True)
class AnalyticsMeta:
    rows_loaded: int
    rows_processed: int
    invalid_rows: int
    invalid_by_reason: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class OverallMetrics:
    total_count: int
    success_count: int
    failure_count: int
    success_rate: float
    volumes: Mapping[str, float]


@dataclass(frozen=True)
class ChannelMetrics:
    channel: str
    total_count: int
    success_count: int
    failure_count: int
    success_rate: float
    failure_rate: float
    volumes: Mapping[str, float]
    average_ticket: Mapping[str, float]
    currency_counts: Mapping[str, int]


@dataclass(frozen=True)
class BrandChannelMetrics:
    channel: str
    total_count: int
    success_count: int
    failure_count: int
    success_rate: float


@dataclass(frozen=True)
class BrandMetrics:
    brand: str
    total_count: int
    success_count: int
    failure_count: int
    success_rate: float
    by_channel: Mapping[str, BrandChannelMetrics]
    volumes: Mapping[str, float]


@dataclass(frozen=True)
class FailureCategoryShare:
    category: str
    count: int
    share: float


@dataclass(frozen=True)
class FailureCategoryBreakdown:
    total_failures: int
    overall: tuple[FailureCategoryShare, ...]
    by_channel: Mapping[str, tuple[FailureCategoryShare, ...]]


@dataclass(frozen=True)
class FailureReasonRecord:
    reason: str
    channel: str
    brand: str
    category: str
    count: int


@dataclass(frozen=True)
class FailureReasonSummary:
    reason: str
    count: int
    share: float


@dataclass(frozen=True)
class AnalyticsResult:
    overall: OverallMetrics
    terminal: tuple[ChannelMetrics, ...]
    brands: tuple[BrandMetrics, ...]
    failure_categories: FailureCategoryBreakdown
    failure_reason_matrix: tuple[FailureReasonRecord, ...]
    meta: AnalyticsMeta

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Scheme analytics
# =============================================================================

@dataclass(frozen=True)
class SchemeAggregate:
    scheme: str
    count: int
    volume: float
    revenue: float
    share_count: float
    share_volume: float
    share_revenue: float


@dataclass(frozen=True)
class TrendPoint:
    period: str
    count: int
    volume: float


@dataclass(frozen=True)
class MarketSharePoint:
    period: str
    shares: Mapping[str, float]


@dataclass(frozen=True)
class YoYPoint:
    year: int
    count: int
    volume: float
    count_growth: float
    volume_growth: float


@dataclass(frozen=True)
class MerchantTrendPoint:
    period: str
    merchants: int


@dataclass(frozen=True)
class SectorDistribution:
    sector: str
    merchant_count: int
    volume: float
    penetration: float


@dataclass(frozen=True)
class SchemeAnalytics:
    focus_scheme: str
    date_range: tuple[datetime | None, datetime | None]
    total_count: int
    total_volume: float
    total_revenue: float
    focus: SchemeAggregate
    by_scheme: tuple[SchemeAggregate, ...]
    trend: tuple[TrendPoint, ...]
    share_trend_count: tuple[MarketSharePoint, ...]
    share_trend_volume: tuple[MarketSharePoint, ...]
    yoy: tuple[YoYPoint, ...]
    merchant_total: int
    merchant_trend: tuple[MerchantTrendPoint, ...]
    sectors: tuple[SectorDistribution, ...]
    top_sectors: tuple[SectorDistribution, ...]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
