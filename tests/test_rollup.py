import pytest

from acquiring_kpi.analytics.rollup import (
    CURRENCY_MISMATCH,
    UNKNOWN_CHANNEL,
    AnalyticsAggregator,
    consume,
    process_rows,
    top_failure_reasons,
)
from acquiring_kpi.contracts.records import EmptyDatasetError


@pytest.fixture
def mixed_rows(ledger_row):
    return [
        ledger_row("2024-01-01", "000", channel="POS", amount="1,000.00", currency="64", network="VISA"),
        ledger_row("2024-01-01", "51", channel="POS", amount="500", currency="064", network="MASTERCARD",
                   reason="Insufficient Funds", category="User"),
        ledger_row("2024-01-01", "00", channel="ATM", amount="2000", currency="524", network="RUPAY"),
        ledger_row("2024-01-01", "00", channel="IPG", amount="10", currency="840", network="VISA"),
        ledger_row("2024-01-01", "91", channel="IPG", amount="30", currency="840", network="AMEX",
                   reason="Issuer Inoperative", category="Technical"),
        ledger_row("2024-01-01", "51", channel="IPG", amount="100", currency="356", network="VISA",
                   reason="Insufficient Funds", category="User"),
        ledger_row("2024-01-01", "00", channel="IPG", amount="50", currency="064"),
        ledger_row("2024-01-01", "00", channel="MOTO", amount="50"),
    ]


class TestAggregator:
    def test_invalid_rows_are_tallied(self, mixed_rows):
        meta = process_rows(mixed_rows).meta
        assert meta.rows_loaded == 8
        assert meta.rows_processed == 6
        assert meta.invalid_rows == 2
        assert meta.invalid_by_reason == {CURRENCY_MISMATCH: 1, UNKNOWN_CHANNEL: 1}

    def test_overall_and_channels(self, mixed_rows):
        result = process_rows(mixed_rows)
        assert (result.overall.total_count, result.overall.success_count) == (6, 3)
        assert result.overall.success_rate == 50.0
        assert result.overall.volumes == {"BTN": 3500.0, "USD": 40.0, "INR": 100.0}

        pos, atm, ipg = result.terminal
        assert (pos.channel, pos.total_count, pos.success_count, pos.failure_rate) == ("POS", 2, 1, 50.0)
        assert pos.average_ticket["BTN"] == 750.0
        assert atm.average_ticket["BTN"] == 2000.0
        assert ipg.currency_counts == {"BTN": 0, "USD": 2, "INR": 1}

    def test_ipg_average_ticket_is_per_currency(self, mixed_rows):
        ipg = process_rows(mixed_rows).terminal[2]
        assert ipg.average_ticket["USD"] == 20.0
        assert ipg.average_ticket["INR"] == 100.0
        assert ipg.average_ticket["BTN"] == 0.0

    def test_unlisted_brands_stay_out_of_brand_metrics(self, mixed_rows):
        result = process_rows(mixed_rows)
        brands = {b.brand: b for b in result.brands}
        assert list(brands) == ["Visa", "MasterCard", "AMEX"]
        assert sum(b.total_count for b in result.brands) == 5
        assert brands["Visa"].total_count == 3
        assert brands["Visa"].by_channel["IPG"].total_count == 2
        assert brands["Visa"].by_channel["IPG"].success_rate == 50.0
        assert brands["AMEX"].success_rate == 0.0

    def test_failure_categories(self, mixed_rows):
        breakdown = process_rows(mixed_rows).failure_categories
        assert breakdown.total_failures == 3
        overall = {share.category: share for share in breakdown.overall}
        assert overall["User"].count == 2
        assert overall["Technical"].count == 1
        assert overall["Business"].count == 0
        ipg = {share.category: share.share for share in breakdown.by_channel["IPG"]}
        assert ipg["User"] == pytest.approx(50.0)

    def test_reason_matrix(self, mixed_rows):
        matrix = process_rows(mixed_rows).failure_reason_matrix
        assert [(r.reason, r.channel, r.brand, r.category, r.count) for r in matrix] == [
            ("Insufficient Funds", "POS", "MasterCard", "User", 1),
            ("Issuer Inoperative", "IPG", "AMEX", "Technical", 1),
            ("Insufficient Funds", "IPG", "Visa", "User", 1),
        ]

    def test_missing_reason_and_category(self, ledger_row):
        row = ledger_row("2024-01-01", "05", reason="")
        (record,) = process_rows([row]).failure_reason_matrix
        assert (record.reason, record.category) == ("Unknown Reason", "Unknown")

    def test_blank_currency_is_a_mismatch(self, ledger_row):
        rows = [
            ledger_row("2024-01-01", channel="POS", currency=""),
            ledger_row("2024-01-01", channel="IPG", currency="  "),
            ledger_row("2024-01-01", channel="POS"),
        ]
        meta = process_rows(rows).meta
        assert (meta.rows_loaded, meta.rows_processed) == (3, 1)
        assert meta.invalid_by_reason == {CURRENCY_MISMATCH: 2, UNKNOWN_CHANNEL: 0}

    def test_merge_matches_single_pass(self, mixed_rows):
        left, right = AnalyticsAggregator(), AnalyticsAggregator()
        left.add_batch(mixed_rows[:3])
        right.add_batch(mixed_rows[3:])
        merged = left.merge(right)
        assert merged.finalize() == process_rows(mixed_rows)
        # inputs are left untouched
        assert left.rows_loaded == 3

    def test_finalize_require_rows(self, ledger_row):
        with pytest.raises(EmptyDatasetError):
            AnalyticsAggregator().finalize(require_rows=True)
        aggregator = AnalyticsAggregator()
        aggregator.add_row(ledger_row("2024-01-01", channel="MOTO"))
        with pytest.raises(EmptyDatasetError):
            aggregator.finalize(require_rows=True)
        assert aggregator.finalize().overall.total_count == 0


class TestConsume:
    def test_progress_per_batch(self, mixed_rows):
        aggregator = AnalyticsAggregator()
        progress = list(consume(aggregator, mixed_rows, batch_size=3))
        assert [(p.rows_loaded, p.batches) for p in progress] == [(3, 1), (6, 2), (8, 3)]
        assert aggregator.finalize() == process_rows(mixed_rows)

    def test_stopping_early_keeps_partial_sums(self, mixed_rows):
        aggregator = AnalyticsAggregator()
        steps = consume(aggregator, iter(mixed_rows), batch_size=2)
        next(steps)
        steps.close()
        assert aggregator.rows_loaded == 2

    def test_batch_size_must_be_positive(self, mixed_rows):
        with pytest.raises(ValueError, match="batch_size"):
            list(consume(AnalyticsAggregator(), mixed_rows, batch_size=0))


class TestTopFailureReasons:
    def test_all(self, mixed_rows):
        top = top_failure_reasons(process_rows(mixed_rows))
        assert [(s.reason, s.count) for s in top] == [("Insufficient Funds", 2), ("Issuer Inoperative", 1)]
        assert top[0].share == pytest.approx(200 / 3)

    def test_filters(self, mixed_rows):
        result = process_rows(mixed_rows)
        top = top_failure_reasons(result, channel="IPG", category="User")
        assert [(s.reason, s.count, s.share) for s in top] == [("Insufficient Funds", 1, 100.0)]
        assert top_failure_reasons(result, brand="AMEX")[0].reason == "Issuer Inoperative"
        assert top_failure_reasons(result, channel="ATM") == []

    def test_limit(self, mixed_rows):
        assert len(top_failure_reasons(process_rows(mixed_rows), limit=1)) == 1
