"""
Cross-sectional analytics rollup over raw ledger rows.

Rows are streamed into an AnalyticsAggregator one at a time (or in batches)
and summarised per channel, per card brand, per failure category, plus a
(reason, channel, brand, category) matrix for later filtering. There is no
time bucketing on this path.

Partial aggregators built over separate chunks can be merged; every tally
is a plain sum, so merge order does not change the totals.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterable, Iterator, Mapping

from acquiring_kpi.contracts.records import (
    AnalyticsMeta,
    AnalyticsResult,
    BrandChannelMetrics,
    BrandMetrics,
    ChannelMetrics,
    EmptyDatasetError,
    FailureCategoryBreakdown,
    FailureCategoryShare,
    FailureReasonRecord,
    FailureReasonSummary,
    OverallMetrics,
    RollupProgress,
)
from acquiring_kpi.contracts.schemas import (
    BRANDS,
    CHANNELS,
    CURRENCIES,
    DEFAULT_BATCH_SIZE,
    FAILURE_CATEGORIES,
    IPG_CURRENCY_CODES,
    LOCAL_CURRENCY,
    OTHER_BRAND,
    OTHER_CHANNEL,
    POS_ATM_CURRENCY_CODES,
    TOP_FAILURE_REASONS,
    UNKNOWN_REASON,
)
from acquiring_kpi.pipeline.classify import is_success
from acquiring_kpi.pipeline.coerce import (
    normalize_brand,
    normalize_channel,
    normalize_currency_code,
    normalize_failure_category,
    parse_amount,
    safe_string,
)
from acquiring_kpi.pipeline.ingest import raw_field
from acquiring_kpi.pipeline.metrics import safe_pct, safe_ratio

logger = logging.getLogger(__name__)

ALL = "ALL"
CURRENCY_MISMATCH = "currency_mismatch"
UNKNOWN_CHANNEL = "unknown_channel"


def _currencies(value: float = 0) -> dict[str, Any]:
    return {currency: value for currency in CURRENCIES}


def _counts() -> dict[str, Any]:
    return {"total": 0, "success": 0, "failure": 0}


def is_valid_currency(channel: str, code: str) -> bool:
    if channel == "IPG":
        return code in IPG_CURRENCY_CODES
    return code in POS_ATM_CURRENCY_CODES


def currency_for(channel: str, code: str) -> str:
    """IPG keeps its settlement currency; POS/ATM settle in the local currency."""
    if channel == "IPG":
        return IPG_CURRENCY_CODES.get(code, "INR")
    return LOCAL_CURRENCY


class AnalyticsAggregator:
    """Running sums for the cross-sectional view. Feed rows, then finalize()."""

    def __init__(self) -> None:
        self.rows_loaded = 0
        self.rows_processed = 0
        self.invalid_by_reason = {CURRENCY_MISMATCH: 0, UNKNOWN_CHANNEL: 0}

        self.overall = _counts()
        self.overall_volumes = _currencies(0.0)

        self.channels = {channel: _counts() for channel in CHANNELS}
        self.channel_volumes = {channel: _currencies(0.0) for channel in CHANNELS}
        self.channel_currency_counts = {channel: _currencies(0) for channel in CHANNELS}

        self.brands = {brand: _counts() for brand in BRANDS}
        self.brand_volumes = {brand: _currencies(0.0) for brand in BRANDS}
        self.brand_channels = {brand: {channel: _counts() for channel in CHANNELS} for brand in BRANDS}

        self.failure_categories = {category: 0 for category in FAILURE_CATEGORIES}
        self.failure_categories_by_channel = {
            channel: {category: 0 for category in FAILURE_CATEGORIES} for channel in CHANNELS
        }
        # (reason, channel, brand, category) -> count, in first-seen order
        self.failure_reasons: dict[tuple[str, str, str, str], int] = {}

    @property
    def invalid_rows(self) -> int:
        return sum(self.invalid_by_reason.values())

    def add_row(self, row: Mapping[str, Any]) -> None:
        self.rows_loaded += 1

        channel = normalize_channel(raw_field(row, "TXN_TYPE"))
        if channel == OTHER_CHANNEL:
            self.invalid_by_reason[UNKNOWN_CHANNEL] += 1
            return

        currency_code = normalize_currency_code(raw_field(row, "CURRENCY"))
        if not is_valid_currency(channel, currency_code):
            self.invalid_by_reason[CURRENCY_MISMATCH] += 1
            return

        self.rows_processed += 1
        value = parse_amount(raw_field(row, "VALUE"))
        success = is_success(raw_field(row, "RESPONSE_CODE"))
        outcome = "success" if success else "failure"
        brand = normalize_brand(raw_field(row, "CARD_NETWORK"))
        currency = currency_for(channel, currency_code)

        self.overall["total"] += 1
        self.overall[outcome] += 1
        self.overall_volumes[currency] += value

        self.channels[channel]["total"] += 1
        self.channels[channel][outcome] += 1
        self.channel_volumes[channel][currency] += value
        self.channel_currency_counts[channel][currency] += 1

        if brand != OTHER_BRAND:
            self.brands[brand]["total"] += 1
            self.brands[brand][outcome] += 1
            self.brand_volumes[brand][currency] += value
            self.brand_channels[brand][channel]["total"] += 1
            self.brand_channels[brand][channel][outcome] += 1

        if not success:
            category = normalize_failure_category(raw_field(row, "RESPONSE_CATEGORY"))
            self.failure_categories[category] += 1
            self.failure_categories_by_channel[channel][category] += 1
            reason = safe_string(raw_field(row, "RESPONSE_REASON")) or UNKNOWN_REASON
            key = (reason, channel, brand, category)
            self.failure_reasons[key] = self.failure_reasons.get(key, 0) + 1

    def add_batch(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """Feed a batch of rows; returns how many were read."""
        n = 0
        for row in rows:
            self.add_row(row)
            n += 1
        return n

    def merge(self, other: "AnalyticsAggregator") -> "AnalyticsAggregator":
        """Return a new aggregator holding the sums of self and other."""
        merged = copy.deepcopy(self)
        merged.rows_loaded += other.rows_loaded
        merged.rows_processed += other.rows_processed
        _add_into(merged.invalid_by_reason, other.invalid_by_reason)
        _add_into(merged.overall, other.overall)
        _add_into(merged.overall_volumes, other.overall_volumes)
        _add_into(merged.channels, other.channels)
        _add_into(merged.channel_volumes, other.channel_volumes)
        _add_into(merged.channel_currency_counts, other.channel_currency_counts)
        _add_into(merged.brands, other.brands)
        _add_into(merged.brand_volumes, other.brand_volumes)
        _add_into(merged.brand_channels, other.brand_channels)
        _add_into(merged.failure_categories, other.failure_categories)
        _add_into(merged.failure_categories_by_channel, other.failure_categories_by_channel)
        _add_into(merged.failure_reasons, other.failure_reasons)
        return merged

    def finalize(self, require_rows: bool = False) -> AnalyticsResult:
        """
        Freeze the running sums into an AnalyticsResult.

        With `require_rows`, an aggregator that saw no rows, or no valid
        rows, raises EmptyDatasetError instead of returning zeros.
        """
        if require_rows and self.rows_loaded == 0:
            raise EmptyDatasetError("No rows were loaded")
        if require_rows and self.rows_processed == 0:
            raise EmptyDatasetError(
                f"None of the {self.rows_loaded} loaded rows had a recognised channel and currency"
            )
        if self.invalid_rows:
            logger.info(
                "[rollup] %d of %d rows excluded (%s)",
                self.invalid_rows, self.rows_loaded,
                ", ".join(f"{k}={v}" for k, v in self.invalid_by_reason.items()),
            )

        overall = OverallMetrics(
            total_count=self.overall["total"],
            success_count=self.overall["success"],
            failure_count=self.overall["failure"],
            success_rate=safe_pct(self.overall["success"], self.overall["total"]),
            volumes=dict(self.overall_volumes),
        )

        terminal = tuple(self._channel_metrics(channel) for channel in CHANNELS)
        brands = tuple(self._brand_metrics(brand) for brand in BRANDS)

        total_failures = self.overall["failure"]
        failure_categories = FailureCategoryBreakdown(
            total_failures=total_failures,
            overall=tuple(
                FailureCategoryShare(category, count, safe_pct(count, total_failures))
                for category, count in self.failure_categories.items()
            ),
            by_channel={
                channel: tuple(
                    FailureCategoryShare(category, count, safe_pct(count, self.channels[channel]["failure"]))
                    for category, count in self.failure_categories_by_channel[channel].items()
                )
                for channel in CHANNELS
            },
        )

        matrix = tuple(
            FailureReasonRecord(reason=reason, channel=channel, brand=brand, category=category, count=count)
            for (reason, channel, brand, category), count in self.failure_reasons.items()
        )

        meta = AnalyticsMeta(
            rows_loaded=self.rows_loaded,
            rows_processed=self.rows_processed,
            invalid_rows=self.invalid_rows,
            invalid_by_reason=dict(self.invalid_by_reason),
        )
        return AnalyticsResult(
            overall=overall,
            terminal=terminal,
            brands=brands,
            failure_categories=failure_categories,
            failure_reason_matrix=matrix,
            meta=meta,
        )

    def _channel_metrics(self, channel: str) -> ChannelMetrics:
        counts = self.channels[channel]
        volumes = self.channel_volumes[channel]
        currency_counts = self.channel_currency_counts[channel]
        average_ticket = _currencies(0.0)
        if channel == "IPG":
            # each IPG currency is averaged over its own transaction count
            for currency in IPG_CURRENCY_CODES.values():
                average_ticket[currency] = safe_ratio(volumes[currency], currency_counts[currency])
        else:
            average_ticket[LOCAL_CURRENCY] = safe_ratio(volumes[LOCAL_CURRENCY], counts["total"])
        return ChannelMetrics(
            channel=channel,
            total_count=counts["total"],
            success_count=counts["success"],
            failure_count=counts["failure"],
            success_rate=safe_pct(counts["success"], counts["total"]),
            failure_rate=safe_pct(counts["failure"], counts["total"]),
            volumes=dict(volumes),
            average_ticket=average_ticket,
            currency_counts=dict(currency_counts),
        )

    def _brand_metrics(self, brand: str) -> BrandMetrics:
        counts = self.brands[brand]
        by_channel = {
            channel: BrandChannelMetrics(
                channel=channel,
                total_count=c["total"],
                success_count=c["success"],
                failure_count=c["failure"],
                success_rate=safe_pct(c["success"], c["total"]),
            )
            for channel, c in self.brand_channels[brand].items()
        }
        return BrandMetrics(
            brand=brand,
            total_count=counts["total"],
            success_count=counts["success"],
            failure_count=counts["failure"],
            success_rate=safe_pct(counts["success"], counts["total"]),
            by_channel=by_channel,
            volumes=dict(self.brand_volumes[brand]),
        )


def _add_into(target: dict, source: Mapping) -> None:
    """Recursively add numeric leaves of source into target."""
    for key, value in source.items():
        if isinstance(value, Mapping):
            _add_into(target.setdefault(key, {}), value)
        else:
            target[key] = target.get(key, 0) + value


def consume(
    aggregator: AnalyticsAggregator,
    rows: Iterable[Mapping[str, Any]],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Iterator[RollupProgress]:
    """
    Feed rows in batches, yielding progress after each batch.

    The caller regains control between batches; closing or abandoning the
    generator stops feeding rows, and whatever was added stays in the
    aggregator.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    batches = 0
    batch: list[Mapping[str, Any]] = []
    for row in rows:
        batch.append(row)
        if len(batch) >= batch_size:
            aggregator.add_batch(batch)
            batches += 1
            batch = []
            yield RollupProgress(rows_loaded=aggregator.rows_loaded, batches=batches)
    if batch:
        aggregator.add_batch(batch)
        batches += 1
        yield RollupProgress(rows_loaded=aggregator.rows_loaded, batches=batches)


def process_rows(rows: Iterable[Mapping[str, Any]]) -> AnalyticsResult:
    aggregator = AnalyticsAggregator()
    aggregator.add_batch(rows)
    return aggregator.finalize()


def top_failure_reasons(
    result: AnalyticsResult,
    channel: str = ALL,
    brand: str = ALL,
    category: str = ALL,
    limit: int = TOP_FAILURE_REASONS,
) -> list[FailureReasonSummary]:
    """Sum the reason matrix under the filters and rank reasons by count."""
    totals: dict[str, int] = {}
    filtered_total = 0
    for record in result.failure_reason_matrix:
        if channel != ALL and record.channel != channel:
            continue
        if brand != ALL and record.brand != brand:
            continue
        if category != ALL and record.category != category:
            continue
        filtered_total += record.count
        totals[record.reason] = totals.get(record.reason, 0) + record.count

    ranked = sorted(totals.items(), key=lambda item: -item[1])
    return [
        FailureReasonSummary(reason=reason, count=count, share=safe_pct(count, filtered_total))
        for reason, count in ranked[:limit]
    ]
