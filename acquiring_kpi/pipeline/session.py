"""
Upload-scoped session: one normalized transaction set, many filtered views.

Each view is recomputed from scratch for a new filter combination and then
served from the content-keyed cache; uploading new rows invalidates it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

import polars as pl

from acquiring_kpi.analytics.cache import AnalyticsCache
from acquiring_kpi.analytics.schemes import scheme_analytics
from acquiring_kpi.contracts.records import EmptyDatasetError, KpiReport, SchemeAnalytics
from acquiring_kpi.contracts.schemas import FOCUS_SCHEME
from acquiring_kpi.pipeline.ingest import normalize_rows, validate_transactions
from acquiring_kpi.pipeline.report import report_from_frame

logger = logging.getLogger(__name__)


class ReportSession:
    def __init__(self, cache: AnalyticsCache | None = None) -> None:
        self.cache = cache if cache is not None else AnalyticsCache()
        self._transactions: pl.DataFrame | None = None

    @property
    def transactions(self) -> pl.DataFrame:
        if self._transactions is None:
            raise EmptyDatasetError("No upload loaded; call upload() first")
        return self._transactions

    def upload(self, rows: Iterable[Mapping[str, Any]], default_channel: str | None = None) -> int:
        df = normalize_rows(rows, default_channel=default_channel)
        if df.is_empty():
            raise EmptyDatasetError("Uploaded file is empty")
        return self.load_frame(df)

    def load_frame(self, df: pl.DataFrame) -> int:
        validate_transactions(df)
        self._transactions = df
        self.cache.invalidate()
        logger.info("[session] loaded %d transactions", df.height)
        return df.height

    def kpi_report(
        self,
        channel: str,
        granularity: str,
        selected_year: int | None = None,
        scheme: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        category_limit: int | None = None,
    ) -> KpiReport:
        filters = {
            "view": "kpi",
            "channel": channel.upper(),
            "granularity": granularity.lower(),
            "selected_year": selected_year,
            "scheme": scheme,
            "start": start,
            "end": end,
            "category_limit": category_limit,
        }
        return self.cache.get_or_compute(
            self.transactions,
            filters,
            lambda df: report_from_frame(
                df,
                channel,
                granularity,
                selected_year=selected_year,
                scheme=scheme,
                start=start,
                end=end,
                category_limit=category_limit,
            ),
        )

    def scheme_analytics(
        self,
        channel: str = "POS_ATM",
        granularity: str = "monthly",
        start: datetime | None = None,
        end: datetime | None = None,
        focus_scheme: str = FOCUS_SCHEME,
    ) -> SchemeAnalytics:
        filters = {
            "view": "schemes",
            "channel": channel,
            "granularity": granularity,
            "start": start,
            "end": end,
            "focus_scheme": focus_scheme,
        }
        return self.cache.get_or_compute(
            self.transactions,
            filters,
            lambda df: scheme_analytics(
                df, channel=channel, granularity=granularity, start=start, end=end, focus_scheme=focus_scheme
            ),
        )
