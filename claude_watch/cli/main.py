"""
CLI interface for Claude Watch.

Runs ingestion passes over the local usage logs and prints the aggregates.
"""

import asyncio
import logging
import sys
from datetime import date, datetime, timedelta
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from claude_watch.config.loader import Settings, load_settings
from claude_watch.core.aggregator import day_bounds
from claude_watch.core.pricing_resolver import PricingResolver
from claude_watch.ingest.pipeline import IngestionPipeline
from claude_watch.ingest.scanner import LogScanner
from claude_watch.storage.models import IngestionResult
from claude_watch.storage.repository import UsageRepository

app = typer.Typer()
console = Console()
logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def build_resolver(settings: Settings) -> PricingResolver:
    """Create a pricing resolver from settings."""
    return PricingResolver(
        cache_path=settings.pricing_cache_path,
        url=settings.pricing_url,
        refresh_interval=timedelta(hours=settings.pricing_refresh_hours),
        timeout=settings.pricing_timeout_seconds,
    )


def build_pipeline(settings: Settings, resolver: PricingResolver) -> IngestionPipeline:
    """Create an ingestion pipeline from settings."""
    return IngestionPipeline(
        scanner=LogScanner(settings.log_root, settings.log_extension),
        resolver=resolver,
        session_gap=timedelta(hours=settings.session_gap_hours),
        rolling_fetch_days=settings.rolling_fetch_days,
    )


def run_ingestion(
    settings: Settings,
    target_date: Optional[date] = None,
    since: Optional[datetime] = None,
) -> IngestionResult:
    """Run one ingestion pass to completion."""
    async def _run() -> IngestionResult:
        async with build_resolver(settings) as resolver:
            return await build_pipeline(settings, resolver).run(target_date=target_date, since=since)

    return asyncio.run(_run())


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj or Settings()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML settings file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """Claude Watch CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    try:
        ctx.obj = load_settings(config)
    except Exception as e:
        console.print(f"[red]Error loading settings:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    if ctx.invoked_subcommand is None:
        console.print("Claude Watch - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage database."""
    settings = _settings(ctx)
    try:
        UsageRepository(settings.db_path).initialize()
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def sync(
    ctx: typer.Context,
    target: Optional[datetime] = typer.Option(
        None,
        "--date",
        "-d",
        formats=["%Y-%m-%d"],
        help="Date whose sessions are cached once the day is over"
    )
):
    """
    Run an ingestion pass and store the results.

    Daily totals are upserted by date. Sessions are cached only for dates
    before today.
    """
    settings = _settings(ctx)
    target_date = target.date() if target else None
    try:
        result = run_ingestion(settings, target_date=target_date)
        repository = UsageRepository(settings.db_path)
        repository.initialize()
        written = repository.upsert_daily(result.daily)
        cached = repository.cache_sessions(result.target_date, result.sessions, date.today())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Parsed {result.events_parsed:,} events from {result.files_scanned:,} files"
    )
    console.print(f"Stored {written} day(s) of usage")
    if cached:
        console.print(f"Cached {len(result.sessions)} session(s) for {result.target_date.isoformat()}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def daily(
    ctx: typer.Context,
    days: int = typer.Option(
        7,
        "--days",
        "-n",
        min=1,
        help="Number of days to show, today included"
    )
):
    """Show token usage and cost per day."""
    settings = _settings(ctx)
    since, _ = day_bounds(date.today() - timedelta(days=days - 1))
    try:
        result = run_ingestion(settings, since=since)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not result.daily:
        console.print("\n[bold yellow]No usage found in the selected period[/]\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Daily Usage")
    table.add_column("Date")
    for heading in ("Input", "Output", "Cache Write", "Cache Read", "Cost"):
        table.add_column(heading, justify="right")
    table.add_column("Models")
    for aggregate in result.daily:
        table.add_row(
            aggregate.date,
            _format_tokens(aggregate.tokens.input_tokens),
            _format_tokens(aggregate.tokens.output_tokens),
            _format_tokens(aggregate.tokens.cache_creation_tokens),
            _format_tokens(aggregate.tokens.cache_read_tokens),
            _format_currency(aggregate.total_cost),
            ", ".join(aggregate.models_used),
        )
    console.print(table)
    console.print(f"Total: {_format_currency(sum(a.total_cost for a in result.daily))}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def hourly(
    ctx: typer.Context,
    target: Optional[datetime] = typer.Option(
        None,
        "--date",
        "-d",
        formats=["%Y-%m-%d"],
        help="Date to break down (defaults to today)"
    )
):
    """Show token usage per hour of one day."""
    settings = _settings(ctx)
    try:
        result = run_ingestion(settings, target_date=target.date() if target else None)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Hourly Usage {result.target_date.isoformat()}")
    table.add_column("Hour")
    for heading in ("Input", "Output", "Cache Write", "Cache Read", "Total"):
        table.add_column(heading, justify="right")
    for bucket in result.hourly:
        table.add_row(
            f"{bucket.hour:02d}:00",
            _format_tokens(bucket.tokens.input_tokens),
            _format_tokens(bucket.tokens.output_tokens),
            _format_tokens(bucket.tokens.cache_creation_tokens),
            _format_tokens(bucket.tokens.cache_read_tokens),
            _format_tokens(bucket.tokens.total_tokens),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def sessions(
    ctx: typer.Context,
    target: Optional[datetime] = typer.Option(
        None,
        "--date",
        "-d",
        formats=["%Y-%m-%d"],
        help="Date to list sessions for (defaults to today)"
    )
):
    """Show usage sessions of one day, most expensive first."""
    settings = _settings(ctx)
    target_date = target.date() if target else date.today()
    try:
        found = None
        if target_date < date.today() and settings.db_path.exists():
            found = UsageRepository(settings.db_path).get_sessions(target_date)
        if found is None:
            found = list(run_ingestion(settings, target_date=target_date).sessions)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not found:
        console.print(f"\n[bold yellow]No sessions found on {target_date.isoformat()}[/]\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Sessions {target_date.isoformat()}")
    table.add_column("Project")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Models")
    for session in found:
        table.add_row(
            session.display_name,
            session.start.astimezone().strftime("%H:%M"),
            session.end.astimezone().strftime("%H:%M"),
            _format_tokens(session.tokens.total_tokens),
            _format_currency(session.cost),
            ", ".join(session.models_used),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def pricing(
    ctx: typer.Context,
    refresh: bool = typer.Option(
        False,
        "--refresh",
        "-r",
        help="Fetch the remote pricing document even if the cache is fresh"
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Show the rates a model identifier resolves to"
    )
):
    """Show the resolved pricing table."""
    settings = _settings(ctx)

    async def _load():
        async with build_resolver(settings) as resolver:
            rates = await (resolver.refresh() if refresh else resolver.get_rates())
            resolved = resolver.resolve(model) if model else None
            return dict(rates), resolved

    try:
        rates, resolved = asyncio.run(_load())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if model:
        if resolved is None:
            console.print(f"[yellow]{model}[/] has no pricing entry; default rates apply")
        else:
            console.print(f"[bold]{model}[/] resolves to [bold]{resolved.model_id}[/]")
            _print_pricing_table([resolved])
        sys.exit(EXIT_CODE_PASS)

    _print_pricing_table(rates[key] for key in sorted(rates))
    sys.exit(EXIT_CODE_PASS)


def _print_pricing_table(entries):
    """Print rates per million tokens."""
    table = Table(title="Model Pricing (USD per 1M tokens)")
    table.add_column("Model")
    for heading in ("Input", "Output", "Cache Write", "Cache Read"):
        table.add_column(heading, justify="right")
    for entry in entries:
        table.add_row(
            entry.model_id,
            _format_rate(entry.input_cost_per_token),
            _format_rate(entry.output_cost_per_token),
            _format_rate(entry.cache_creation_cost_per_token),
            _format_rate(entry.cache_read_cost_per_token),
        )
    console.print(table)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


def _format_tokens(count: int) -> str:
    return f"{count:,}"


def _format_rate(rate: Optional[float]) -> str:
    if rate is None:
        return "-"
    return f"${rate * 1_000_000:,.2f}"


if __name__ == "__main__":
    app()
