from datetime import datetime

import polars as pl
import pytest

from acquiring_kpi.analytics.schemes import revenue_expr, scheme_analytics, sector_expr
from acquiring_kpi.pipeline.ingest import normalize_rows


@pytest.fixture
def scheme_frame(ledger_row):
    rows = [
        ledger_row("2024-01-10", channel="POS", network="MASTERCARD", amount="1000", mid="M1", mcc="5411"),
        ledger_row("2024-01-12", channel="ATM", network="VISA", amount="500", mid="M2", mcc="6011"),
        ledger_row("2024-02-03", channel="POS", network="MASTERCARD", amount="2000", mid="M3", mcc="5812"),
        ledger_row("2024-02-04", channel="POS", network="AMEX", amount="1000", mid="M4", mcc="3501"),
        ledger_row("2025-01-05", channel="POS", network="MASTERCARD", amount="3000", mid="M1", mcc="5411"),
        ledger_row("2024-01-15", channel="IPG", network="MASTERCARD", amount="9999", mid="M9", mcc="5411"),
    ]
    return normalize_rows(rows)


@pytest.mark.parametrize(
    "mcc, sector",
    [
        ("3501", "Hotels"),
        ("3005", "Tourism"),
        ("4511", "Tourism"),
        ("5812", "Restaurants"),
        ("5734", "E-commerce"),
        ("5411", "Retail"),
        ("6011", "Services"),
        ("7011", "Others"),
        (None, "Others"),
        ("n/a", "Others"),
    ],
)
def test_sector_mapping(mcc, sector):
    df = pl.DataFrame({"mcc": [mcc]}, schema={"mcc": pl.Utf8})
    assert df.select(sector_expr())["sector"].to_list() == [sector]


def test_revenue_uses_scheme_mdr():
    df = pl.DataFrame({"amount": [1000.0, 1000.0, 1000.0], "card_network": ["Visa", "AMEX", "Other"]})
    assert df.select(revenue_expr())["revenue"].to_list() == pytest.approx([15.0, 20.0, 15.0])


class TestSchemeAnalytics:
    def test_totals_and_shares(self, scheme_frame):
        result = scheme_analytics(scheme_frame)
        assert result.total_count == 5
        assert result.total_volume == 7500.0
        assert result.total_revenue == pytest.approx(117.5)
        by_scheme = {agg.scheme: agg for agg in result.by_scheme}
        assert list(by_scheme) == ["MasterCard", "Visa", "AMEX", "Other"]
        assert by_scheme["MasterCard"].count == 3
        assert by_scheme["MasterCard"].share_count == 60.0
        assert by_scheme["MasterCard"].share_volume == 80.0
        assert by_scheme["Other"].count == 0
        assert result.focus == by_scheme["MasterCard"]
        assert result.date_range == (datetime(2024, 1, 10), datetime(2025, 1, 5))

    def test_trends_are_calendar_ordered(self, scheme_frame):
        result = scheme_analytics(scheme_frame, granularity="monthly")
        assert [(p.period, p.count, p.volume) for p in result.trend] == [
            ("2024-01", 1, 1000.0),
            ("2024-02", 1, 2000.0),
            ("2025-01", 1, 3000.0),
        ]
        january = result.share_trend_count[0]
        assert january.period == "2024-01"
        assert january.shares == {"MasterCard": 50.0, "Visa": 50.0, "AMEX": 0.0, "Other": 0.0}
        assert [p.merchants for p in result.merchant_trend] == [1, 1, 1]

    def test_year_over_year(self, scheme_frame):
        yoy = scheme_analytics(scheme_frame).yoy
        assert [(p.year, p.count, p.volume) for p in yoy] == [(2024, 2, 3000.0), (2025, 1, 3000.0)]
        assert (yoy[0].count_growth, yoy[0].volume_growth) == (0.0, 0.0)
        assert (yoy[1].count_growth, yoy[1].volume_growth) == (-50.0, 0.0)

    def test_merchants_and_sectors(self, scheme_frame):
        result = scheme_analytics(scheme_frame)
        assert result.merchant_total == 2
        assert [(s.sector, s.volume, s.penetration) for s in result.sectors] == [
            ("Retail", 4000.0, 100.0),
            ("Restaurants", 2000.0, 100.0),
            ("Services", 0.0, 0.0),
            ("Hotels", 0.0, 0.0),
        ]
        assert result.sectors[0].merchant_count == 1
        assert result.top_sectors == result.sectors

    def test_channel_and_period_filters(self, scheme_frame):
        atm = scheme_analytics(scheme_frame, channel="ATM")
        assert atm.total_count == 1
        assert atm.focus.count == 0

        window = scheme_analytics(scheme_frame, start=datetime(2024, 2, 1), end=datetime(2024, 12, 31))
        assert window.total_count == 2
        assert [p.period for p in window.trend] == ["2024-02"]

    def test_quarterly_and_other_focus(self, scheme_frame):
        result = scheme_analytics(scheme_frame, granularity="quarterly", focus_scheme="Visa")
        assert [p.period for p in result.trend] == ["2024-Q1", "2025-Q1"]
        assert result.focus.count == 1

    def test_empty_selection(self, scheme_frame):
        result = scheme_analytics(scheme_frame, start=datetime(2030, 1, 1))
        assert result.total_count == 0
        assert result.date_range == (None, None)
        assert result.trend == ()

    def test_invalid_arguments(self, scheme_frame):
        with pytest.raises(ValueError):
            scheme_analytics(scheme_frame, channel="IPG")
        with pytest.raises(ValueError):
            scheme_analytics(scheme_frame, granularity="weekly")
