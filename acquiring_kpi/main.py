"""
Acquiring KPI Engine: CLI entrypoint.

Usage:
    acquiring-kpi generate                       # Write a synthetic ledger CSV
    acquiring-kpi report -i ledger.csv -c POS    # Time-bucketed KPIs + comparisons
    acquiring-kpi rollup -i ledger.csv           # Cross-sectional channel/brand rollup
    acquiring-kpi schemes -i ledger.csv          # Scheme share and MDR revenue
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

import click
import polars as pl
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress
from rich.table import Table

from acquiring_kpi.contracts.records import EmptyDatasetError
from acquiring_kpi.contracts.schemas import CHANNELS, DECLINE_CATEGORIES, DEFAULT_BATCH_SIZE, GRANULARITIES
from acquiring_kpi.pipeline.classify import DEFAULT_TAXONOMY

console = Console()


def _read_ledger(path: str) -> pl.DataFrame:
    source = Path(path)
    if not source.exists():
        raise click.ClickException(f"Input file not found: {path}")
    if source.suffix.lower() == ".parquet":
        return pl.read_parquet(source)
    # every column as text; the normalizer does the typing
    return pl.read_csv(source, infer_schema_length=0)


def _parse_day(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from exc


def _write_json(path: str, payload: dict) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as fh:
        json.dump(payload, fh, indent=2, default=str)
    console.print(f"[dim]Saved JSON -> {target}[/dim]")


def _delta_style(value: float) -> str:
    if value < 0:
        return f"[red]{value:+.2f}[/red]"
    if value > 0:
        return f"[green]{value:+.2f}[/green]"
    return f"{value:+.2f}"


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """Acquiring KPI Engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command()
@click.option("-o", "--output", default="data/raw/ledger.csv", show_default=True)
@click.option("-n", "--rows", default=12_000, show_default=True, type=int)
@click.option("--seed", default=42, show_default=True, type=int)
def generate(output: str, rows: int, seed: int) -> None:
    """Generate a synthetic acquiring ledger CSV."""
    from acquiring_kpi.data_generator.generate import write_ledger

    console.rule("[bold]Synthetic Ledger[/bold]")
    df = write_ledger(output, n=rows, seed=seed)
    console.print(f"[green]Saved {df.height:,} rows -> {output}[/green]")


@cli.command()
@click.option("-i", "--input", "input_path", required=True, help="Ledger CSV or parquet.")
@click.option("-c", "--channel", type=click.Choice(CHANNELS, case_sensitive=False), required=True)
@click.option("-g", "--granularity", type=click.Choice(GRANULARITIES, case_sensitive=False), default="monthly", show_default=True)
@click.option("--year", "selected_year", type=int, default=None, help="Restrict yearly buckets to one year.")
@click.option("--scheme", default=None, help="Card network filter, e.g. Visa.")
@click.option("--start", default=None, help="First day, YYYY-MM-DD.")
@click.option("--end", default=None, help="Last day, YYYY-MM-DD (inclusive).")
@click.option("--top", "category_limit", type=int, default=None, help="Decline reasons per category.")
@click.option("--json", "json_path", default=None, help="Also write the report as JSON.")
@click.option("--csv", "csv_path", default=None, help="Also write the bucket KPI table as CSV.")
def report(input_path, channel, granularity, selected_year, scheme, start, end, category_limit, json_path, csv_path) -> None:
    """Time-bucketed success/decline KPIs with period-over-period comparison."""
    from acquiring_kpi.pipeline.session import ReportSession

    console.rule(f"[bold cyan]{channel.upper()} {granularity.lower()} KPI report[/bold cyan]")
    end_day = _parse_day(end)
    if end_day is not None:
        end_day = end_day.replace(hour=23, minute=59, second=59, microsecond=999999)

    session = ReportSession()
    try:
        session.upload(_read_ledger(input_path).iter_rows(named=True), default_channel=channel)
        result = session.kpi_report(
            channel,
            granularity,
            selected_year=selected_year,
            scheme=scheme,
            start=_parse_day(start),
            end=end_day,
            category_limit=category_limit,
        )
    except (EmptyDatasetError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(box=box.ROUNDED, header_style="bold magenta", expand=True)
    table.add_column("Period", style="bold")
    table.add_column("Total", justify="right")
    table.add_column("Success %", justify="right")
    table.add_column("Business %", justify="right")
    table.add_column("User %", justify="right")
    table.add_column("Technical %", justify="right")
    table.add_column("Top decline")
    for kpi in result.buckets:
        leaders = [d for category in DECLINE_CATEGORIES for d in kpi.declines_for(category)[:1]]
        top = max(leaders, key=lambda d: d.count, default=None)
        table.add_row(
            kpi.period,
            f"{kpi.total:,}",
            f"{kpi.success_rate:.2f}",
            f"{kpi.business_rate:.2f}",
            f"{kpi.user_rate:.2f}",
            f"{kpi.technical_rate:.2f}",
            escape(f"{DEFAULT_TAXONOMY.decline_label(top.code, top.description)} ({top.count})") if top else "-",
        )
    console.print(table)

    if result.comparisons:
        console.rule("[bold green]Period over period")
        for comparison in result.comparisons:
            console.print(
                f"[bold]{comparison.from_period} -> {comparison.to_period}[/bold]  "
                f"success {_delta_style(comparison.success_rate_change)}pp  "
                f"business {comparison.business_change:+d}  user {comparison.user_change:+d}  "
                f"technical {comparison.technical_change:+d}"
            )
            for line in comparison.insights:
                console.print(f"  {escape(line)}")

    console.rule("[bold green]Executive summary")
    console.print(escape(result.executive_summary))
    console.print(
        f"\n[dim]{result.rows_bucketed:,} of {result.rows_loaded:,} rows bucketed | "
        f"{result.date_range[0]} to {result.date_range[1]}[/dim]"
    )
    if json_path:
        _write_json(json_path, result.to_dict())
    if csv_path:
        from acquiring_kpi.pipeline.kpi import kpis_to_frame

        Path(csv_path).parent.mkdir(parents=True, exist_ok=True)
        kpis_to_frame(list(result.buckets)).write_csv(csv_path)
        console.print(f"[dim]Saved CSV -> {csv_path}[/dim]")


@cli.command()
@click.option("-i", "--input", "input_path", required=True, help="Ledger CSV or parquet.")
@click.option("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, show_default=True)
@click.option("--channel", "reason_channel", default="ALL", show_default=True, help="Failure-reason filter.")
@click.option("--brand", "reason_brand", default="ALL", show_default=True, help="Failure-reason filter.")
@click.option("--category", "reason_category", default="ALL", show_default=True, help="Failure-reason filter.")
@click.option("--json", "json_path", default=None, help="Also write the rollup as JSON.")
def rollup(input_path, batch_size, reason_channel, reason_brand, reason_category, json_path) -> None:
    """Cross-sectional rollup by channel, brand and failure category."""
    from acquiring_kpi.analytics.rollup import AnalyticsAggregator, consume, top_failure_reasons

    console.rule("[bold cyan]Acquiring analytics rollup[/bold cyan]")
    df = _read_ledger(input_path)
    aggregator = AnalyticsAggregator()
    with Progress(console=console, transient=True) as progress:
        task = progress.add_task("Aggregating rows", total=df.height)
        for step in consume(aggregator, df.iter_rows(named=True), batch_size=batch_size):
            progress.update(task, completed=step.rows_loaded)
    try:
        result = aggregator.finalize(require_rows=True)
    except EmptyDatasetError as exc:
        raise click.ClickException(str(exc)) from exc

    meta = result.meta
    console.print(
        f"Rows loaded: {meta.rows_loaded:,} | processed: {meta.rows_processed:,} | "
        f"invalid: {meta.invalid_rows:,} {dict(meta.invalid_by_reason)}"
    )
    console.print(f"Overall success rate: [bold]{result.overall.success_rate:.2f}%[/bold]")

    table = Table(title="Terminals", box=box.ROUNDED, header_style="bold magenta")
    for col in ("Channel", "Total", "Success %", "Failure %", "Avg ticket"):
        table.add_column(col, justify="right" if col != "Channel" else "left")
    for metrics in result.terminal:
        tickets = ", ".join(f"{cur} {val:,.2f}" for cur, val in metrics.average_ticket.items() if val)
        table.add_row(
            metrics.channel,
            f"{metrics.total_count:,}",
            f"{metrics.success_rate:.2f}",
            f"{metrics.failure_rate:.2f}",
            tickets or "-",
        )
    console.print(table)

    table = Table(title="Card brands", box=box.ROUNDED, header_style="bold magenta")
    for col in ("Brand", "Total", "Success %", "POS %", "ATM %", "IPG %"):
        table.add_column(col, justify="right" if col != "Brand" else "left")
    for metrics in result.brands:
        table.add_row(
            metrics.brand,
            f"{metrics.total_count:,}",
            f"{metrics.success_rate:.2f}",
            *(f"{metrics.by_channel[ch].success_rate:.2f}" for ch in CHANNELS),
        )
    console.print(table)

    table = Table(title="Top failure reasons", box=box.ROUNDED, header_style="bold magenta")
    table.add_column("Reason")
    table.add_column("Count", justify="right")
    table.add_column("Share %", justify="right")
    for summary in top_failure_reasons(result, reason_channel, reason_brand, reason_category):
        table.add_row(escape(summary.reason), f"{summary.count:,}", f"{summary.share:.2f}")
    console.print(table)

    if json_path:
        _write_json(json_path, result.to_dict())


@cli.command()
@click.option("-i", "--input", "input_path", required=True, help="Ledger CSV or parquet.")
@click.option("-c", "--channel", type=click.Choice(["POS", "ATM", "POS_ATM"], case_sensitive=False), default="POS_ATM", show_default=True)
@click.option("-g", "--granularity", type=click.Choice(["monthly", "quarterly", "yearly"], case_sensitive=False), default="monthly", show_default=True)
@click.option("--start", default=None, help="First day, YYYY-MM-DD.")
@click.option("--end", default=None, help="Last day, YYYY-MM-DD.")
@click.option("--focus", "focus_scheme", default="MasterCard", show_default=True)
@click.option("--json", "json_path", default=None, help="Also write the analytics as JSON.")
def schemes(input_path, channel, granularity, start, end, focus_scheme, json_path) -> None:
    """Scheme share, MDR revenue and sector penetration."""
    from acquiring_kpi.pipeline.session import ReportSession

    console.rule("[bold cyan]Scheme analytics[/bold cyan]")
    session = ReportSession()
    try:
        session.upload(_read_ledger(input_path).iter_rows(named=True))
        result = session.scheme_analytics(
            channel=channel.upper(),
            granularity=granularity.lower(),
            start=_parse_day(start),
            end=_parse_day(end),
            focus_scheme=focus_scheme,
        )
    except (EmptyDatasetError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(box=box.ROUNDED, header_style="bold magenta")
    for col in ("Scheme", "Count", "Volume", "Revenue", "Count %", "Volume %"):
        table.add_column(col, justify="right" if col != "Scheme" else "left")
    for agg in result.by_scheme:
        table.add_row(
            agg.scheme,
            f"{agg.count:,}",
            f"{agg.volume:,.2f}",
            f"{agg.revenue:,.2f}",
            f"{agg.share_count:.2f}",
            f"{agg.share_volume:.2f}",
        )
    console.print(table)
    console.print(
        f"{result.focus_scheme}: {result.merchant_total:,} active merchants across "
        f"{len(result.trend)} periods"
    )
    for sector in result.top_sectors:
        console.print(f"  {sector.sector:<12} penetration {sector.penetration:6.2f}%  merchants {sector.merchant_count:,}")

    if json_path:
        _write_json(json_path, result.to_dict())


if __name__ == "__main__":
    cli()
