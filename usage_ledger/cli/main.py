"""
CLI interface for the usage ledger.

Provides command-line access to recording, querying and pruning usage.
"""

import sys
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from usage_ledger.config.loader import LedgerConfig, load_ledger_config
from usage_ledger.core.errors import LedgerError
from usage_ledger.core.report import summarize_usage
from usage_ledger.storage.repository import UsageLedger, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _parse_date(value: Optional[str], name: str) -> Optional[date]:
    """Parse a YYYY-MM-DD option value."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"{name} must be a date in YYYY-MM-DD format, got {value!r}")


def _get_config(ctx: typer.Context) -> LedgerConfig:
    return ctx.obj or LedgerConfig()


def _open_ledger(ctx: typer.Context) -> UsageLedger:
    return UsageLedger.from_config(_get_config(ctx))


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {error}")
    if getattr(error, "retryable", False):
        console.print("[dim]Storage is unavailable; retry later.[/]")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="Path to the SQLite ledger database"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML config file"
    )
):
    """API usage ledger CLI."""
    try:
        base = load_ledger_config(config) if config else LedgerConfig()
        ctx.obj = base.with_overrides(db_path=db)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("API Usage Ledger - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the ledger database."""
    config = _get_config(ctx)
    try:
        initialize_schema(config.db_path, config.busy_timeout)
    except LedgerError as e:
        _fail(e)
    console.print(f"[green]✓[/] Ledger initialized at {config.db_path}")


@app.command()
def record(
    ctx: typer.Context,
    provider: str = typer.Argument(..., help="API provider name, e.g. openai"),
    usage_date: Optional[str] = typer.Option(
        None,
        "--date",
        "-d",
        help="Usage day (YYYY-MM-DD); defaults to today (UTC)"
    ),
    requests: int = typer.Option(1, "--requests", "-r", help="Requests to add"),
    tokens: int = typer.Option(0, "--tokens", "-t", help="Tokens to add"),
    cost: str = typer.Option("0", "--cost", help="Estimated USD cost to add")
):
    """Add one usage delta to a provider's daily aggregate."""
    parsed_date = _parse_date(usage_date, "--date")
    try:
        ledger = _open_ledger(ctx)
        result = ledger.record_usage(
            provider,
            parsed_date,
            request_delta=requests,
            token_delta=tokens,
            cost_delta=cost
        )
    except LedgerError as e:
        _fail(e)

    console.print(
        f"[green]✓[/] {result.provider} {result.date}: "
        f"{result.request_count} requests, {result.token_count} tokens, "
        f"{_format_currency(result.estimated_cost)}"
    )


@app.command()
def query(
    ctx: typer.Context,
    provider: Optional[str] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Only show this provider"
    ),
    from_date: Optional[str] = typer.Option(
        None,
        "--from",
        help="First day (YYYY-MM-DD); defaults to --to"
    ),
    to_date: Optional[str] = typer.Option(
        None,
        "--to",
        help="Last day (YYYY-MM-DD); defaults to today (UTC)"
    )
):
    """Show daily usage records, newest first."""
    end = _parse_date(to_date, "--to")
    start = _parse_date(from_date, "--from")
    try:
        ledger = _open_ledger(ctx)
        end = end or ledger.today()
        start = start or end
        records = list(ledger.query_usage(provider, start, end))
    except LedgerError as e:
        _fail(e)

    if not records:
        console.print("\n[bold yellow]No usage recorded in this range[/]\n")
        return
    _display_records(records)


@app.command()
def prune(
    ctx: typer.Context,
    retention_days: Optional[int] = typer.Option(
        None,
        "--retention-days",
        help="Keep this many days of history; defaults to the configured horizon"
    )
):
    """Delete usage records older than the retention horizon."""
    try:
        ledger = _open_ledger(ctx)
        removed = ledger.prune_older_than(retention_days)
    except LedgerError as e:
        _fail(e)
    console.print(f"[green]✓[/] Removed {removed} usage records")


@app.command()
def report(
    ctx: typer.Context,
    provider: Optional[str] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Only report this provider"
    ),
    days: int = typer.Option(30, "--days", help="Number of days to include, ending today")
):
    """Show per-provider totals for the last N days."""
    if days <= 0:
        raise typer.BadParameter("--days must be > 0")
    try:
        ledger = _open_ledger(ctx)
        end = ledger.today()
        start = end - timedelta(days=days - 1)
        summaries = summarize_usage(ledger.query_usage(provider, start, end))
    except LedgerError as e:
        _fail(e)

    console.print(f"\n[bold]API Usage Report[/bold] ({start} to {end})")
    console.print("-" * 40)
    if not summaries:
        console.print("\n[dim]No usage recorded in this period.[/]")
        return

    for summary in summaries:
        console.print(f"\n[bold]Provider:[/bold] {summary.provider}")
        console.print(f"Active days: {summary.days}")
        console.print(f"Requests: {summary.request_count:,}")
        console.print(f"Tokens: {summary.token_count:,}")
        console.print(f"Estimated cost: {_format_currency(summary.estimated_cost)}")
        console.print(f"Cost/request: {_format_currency(summary.avg_cost_per_request)}")


def _format_currency(amount: Decimal) -> str:
    """Format a six-digit cost as dollars."""
    return f"${amount:,.6f}"


def _display_records(records) -> None:
    table = Table(title="Daily API Usage")
    table.add_column("Date")
    table.add_column("Provider")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Est. Cost", justify="right")

    for r in records:
        table.add_row(
            r.date.isoformat(),
            r.provider,
            f"{r.request_count:,}",
            f"{r.token_count:,}",
            _format_currency(r.estimated_cost)
        )
    console.print(table)


if __name__ == "__main__":
    app()
