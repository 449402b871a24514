from datetime import datetime

import polars as pl
import pytest

from acquiring_kpi.pipeline.bucketing import (
    assign_buckets,
    check_granularity,
    parse_period_key,
    period_key_expr,
    sort_period_keys,
)
from acquiring_kpi.pipeline.ingest import normalize_rows


def _keys(granularity, *stamps):
    df = pl.DataFrame({"timestamp": list(stamps)}, schema={"timestamp": pl.Datetime("us")})
    return df.select(period_key_expr(granularity))["period"].to_list()


class TestPeriodKeys:
    def test_daily(self):
        assert _keys("daily", datetime(2024, 3, 5, 23, 59)) == ["2024-03-05"]

    def test_custom_is_daily(self):
        assert _keys("custom", datetime(2024, 3, 5)) == ["2024-03-05"]

    def test_weekly_uses_iso_owning_year(self):
        # 2021-01-01 is a Friday in the last ISO week of 2020
        assert _keys("weekly", datetime(2021, 1, 1)) == ["2020-W53"]
        # 2024-12-30 is a Monday in the first ISO week of 2025
        assert _keys("weekly", datetime(2024, 12, 30)) == ["2025-W01"]

    def test_weekly_zero_pads(self):
        assert _keys("weekly", datetime(2024, 2, 14)) == ["2024-W07"]

    def test_monthly(self):
        assert _keys("monthly", datetime(2024, 9, 30)) == ["2024-09"]

    def test_quarter_boundaries(self):
        assert _keys("quarterly", datetime(2024, 3, 31, 23, 59), datetime(2024, 4, 1)) == ["2024-Q1", "2024-Q2"]

    def test_yearly(self):
        assert _keys("yearly", datetime(2023, 12, 31)) == ["2023"]


def test_check_granularity():
    assert check_granularity(" Monthly ") == "monthly"
    with pytest.raises(ValueError, match="Unknown granularity"):
        check_granularity("hourly")


class TestSortPeriodKeys:
    def test_quarters_sort_by_calendar(self):
        assert sort_period_keys(["2024-Q4", "2023-Q1", "2024-Q1"]) == ["2023-Q1", "2024-Q1", "2024-Q4"]

    def test_weeks_across_year_end(self):
        assert sort_period_keys(["2021-W01", "2020-W53"]) == ["2020-W53", "2021-W01"]

    def test_days(self):
        assert sort_period_keys(["2024-02-01", "2024-01-31", "2023-12-31"]) == [
            "2023-12-31", "2024-01-31", "2024-02-01",
        ]

    def test_unparsable_keys_sort_first(self):
        assert sort_period_keys(["2024-01", "bogus"]) == ["bogus", "2024-01"]
        assert parse_period_key("bogus") == (0,)

    def test_strict_parse_rejects_malformed_keys(self):
        assert parse_period_key("2024-W07", strict=True) == (2024, 7)
        with pytest.raises(ValueError, match="Malformed period key"):
            parse_period_key("2024-13-x", strict=True)


class TestAssignBuckets:
    def test_keys_in_calendar_order_and_undated_rows_dropped(self, ledger_row):
        rows = [
            ledger_row("2024-03-10 08:00:00"),
            ledger_row("2024-01-10 08:00:00"),
            ledger_row("garbage"),
            ledger_row("2024-01-20 08:00:00", "51"),
        ]
        buckets = assign_buckets(normalize_rows(rows), "monthly")
        assert list(buckets) == ["2024-01", "2024-03"]
        assert buckets["2024-01"]["response_code"].to_list() == ["00", "51"]
        assert sum(frame.height for frame in buckets.values()) == 3

    def test_yearly_selected_year(self, ledger_row):
        rows = [
            ledger_row("2023-06-01 08:00:00"),
            ledger_row("2024-06-01 08:00:00"),
            ledger_row("2024-07-01 08:00:00"),
        ]
        df = normalize_rows(rows)
        assert list(assign_buckets(df, "yearly")) == ["2023", "2024"]
        only = assign_buckets(df, "yearly", selected_year=2024)
        assert list(only) == ["2024"]
        assert only["2024"].height == 2

    def test_selected_year_ignored_for_other_granularities(self, ledger_row):
        rows = [ledger_row("2023-06-01 08:00:00"), ledger_row("2024-06-01 08:00:00")]
        assert list(assign_buckets(normalize_rows(rows), "monthly", selected_year=2024)) == ["2023-06", "2024-06"]

    def test_empty_frame(self):
        assert assign_buckets(normalize_rows([]), "daily") == {}
