import polars as pl

from acquiring_kpi.analytics.rollup import process_rows
from acquiring_kpi.contracts.schemas import RAW_LEDGER_COLUMNS
from acquiring_kpi.data_generator.generate import generate_ledger, ledger_frame, write_ledger
from acquiring_kpi.pipeline.report import build_kpi_report


def test_seeded_generation_is_reproducible():
    assert generate_ledger(200, seed=7) == generate_ledger(200, seed=7)
    assert generate_ledger(200, seed=7) != generate_ledger(200, seed=8)


def test_rows_have_ledger_columns():
    rows = generate_ledger(50, seed=1)
    assert all(list(row) == RAW_LEDGER_COLUMNS for row in rows)
    frame = ledger_frame(rows)
    assert frame.columns == RAW_LEDGER_COLUMNS
    assert all(dtype == pl.Utf8 for dtype in frame.dtypes)


def test_generated_ledger_feeds_both_paths(tmp_path):
    path = tmp_path / "raw" / "ledger.csv"
    df = write_ledger(str(path), n=600, seed=3)
    assert path.exists()
    assert df.height == 600

    rows = list(pl.read_csv(path, infer_schema_length=0).iter_rows(named=True))
    report = build_kpi_report(rows, "POS", "monthly")
    assert report.buckets
    assert all(b.total == b.success_count + b.business_failures + b.user_failures + b.technical_failures
               for b in report.buckets)

    result = process_rows(rows)
    assert result.meta.rows_loaded == 600
    assert result.meta.rows_processed + result.meta.invalid_rows == 600
    assert 80.0 < result.overall.success_rate < 100.0
