"""CLI entry point for the price aggregation engine.

Provides ``pricescout search`` to run one aggregated search and
``pricescout health`` to inspect persisted source health and alerts.
"""

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from pricescout.models.config import ConfigManager, EngineConfig
from pricescout.models.data_models import SearchResponse
from pricescout.models.search import SearchFilters, SearchRequest, SortOrder
from pricescout.monitoring.health_monitor import HealthMonitor, LoggingAlertSink
from pricescout.monitoring.logger import StructuredLogger
from pricescout.pipeline.orchestrator import SearchOrchestrator
from pricescout.pipeline.output import JSONOutputFormatter
from pricescout.storage.cache import create_cache
from pricescout.storage.source_store import YamlSourceStore


console = Console()

STATUS_STYLES = {
    "healthy": "green",
    "warning": "yellow",
    "critical": "red",
    "unknown": "dim",
}


def _load_config(config_path: Path, overrides: Dict) -> EngineConfig:
    return ConfigManager(config_path).load_config(overrides)


@click.group()
@click.version_option(version="1.0.0", prog_name="pricescout")
def cli() -> None:
    """PriceScout - multi-source price aggregation."""


@cli.command()
@click.argument("query")
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option(
    "--sources-file",
    type=click.Path(path_type=Path),
    help="Source profile YAML file (overrides config)",
)
@click.option("--source", "sources", multiple=True, help="Restrict the search to this source id (repeatable)")
@click.option("--max-results", "-n", type=int, help="Maximum results to return (1-100)")
@click.option("--min-price", type=int, help="Inclusive minimum price in minor units")
@click.option("--max-price", type=int, help="Inclusive maximum price in minor units")
@click.option(
    "--availability",
    type=click.Choice(["in_stock", "out_of_stock", "limited", "unknown"]),
    help="Only listings with this availability",
)
@click.option("--min-rating", type=float, help="Minimum rating (unrated listings count as 0)")
@click.option(
    "--sort",
    "sort_field",
    type=click.Choice(["price", "rating", "reviewCount", "lastScraped"]),
    help="Sort field",
)
@click.option("--desc", is_flag=True, help="Sort descending")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Write the JSON response to this file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option(
    "--allow-synthetic/--no-synthetic",
    default=None,
    help="Serve synthetic listings when a scrape fails (never in production)",
)
@click.option("--no-progress", is_flag=True, help="Disable progress spinner (useful for CI/CD)")
def search(
    query: str,
    config: Path,
    sources_file: Optional[Path],
    sources: Tuple[str, ...],
    max_results: Optional[int],
    min_price: Optional[int],
    max_price: Optional[int],
    availability: Optional[str],
    min_rating: Optional[float],
    sort_field: Optional[str],
    desc: bool,
    output: Optional[Path],
    log_level: Optional[str],
    allow_synthetic: Optional[bool],
    no_progress: bool,
) -> None:
    """
    Search every active source for QUERY and print the merged listings.

    Examples:

        # Cheapest noise-cancelling headphones
        $ pricescout search "wireless headphones" --sort price

        # Only two sources, prices between $200 and $400, saved as JSON
        $ pricescout search "sony xm5" --source shop-a --source shop-b \\
            --min-price 20000 --max-price 40000 -o out/search.json
    """
    try:
        cli_overrides = {
            "sources_file": str(sources_file) if sources_file else None,
            "log_level": log_level.upper() if log_level else None,
            "allow_synthetic_fallback": allow_synthetic,
        }
        engine_config = _load_config(config, cli_overrides)

        filters = SearchFilters(
            min_price=min_price,
            max_price=max_price,
            availability=availability,
            min_rating=min_rating,
        )
        request = SearchRequest(
            query=query,
            sources=list(sources) or None,
            max_results=max_results or engine_config.default_max_results,
            filters=None if filters.is_empty() else filters,
            sort=SortOrder(field=sort_field, direction="desc" if desc else "asc") if sort_field else None,
        )

        response = asyncio.run(_run_search_with_progress(engine_config, request, no_progress))

        formatter = JSONOutputFormatter()
        if output:
            formatter.save(formatter.format(response), str(output))

        _display_response(response, output)
        sys.exit(0)

    except KeyboardInterrupt:
        console.print("\n[yellow]Search interrupted by user[/yellow]")
        sys.exit(130)
    except ValidationError as e:
        console.print(f"\n[red]Invalid request:[/red] {e}")
        sys.exit(2)
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)


async def _run_search_with_progress(
    config: EngineConfig,
    request: SearchRequest,
    no_progress: bool,
) -> SearchResponse:
    if no_progress:
        return await run_search(config, request)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f"[cyan]Searching for {request.query!r}...", total=None)
        return await run_search(config, request)


async def run_search(config: EngineConfig, request: SearchRequest) -> SearchResponse:
    """
    Wire cache, health monitor and orchestrator together and run one search.

    Health outcomes are flushed before the cache connection is closed so
    they persist for ``pricescout health``.
    """
    logger = StructuredLogger(level=config.log_level)
    cache = create_cache(config.redis_url)
    monitor = HealthMonitor(cache=cache, config=config, sink=LoggingAlertSink(), logger=logger)
    try:
        await monitor.load_persisted_data()
        orchestrator = SearchOrchestrator(
            config,
            YamlSourceStore(config.sources_path),
            cache,
            health_monitor=monitor,
            logger=logger,
        )
        response = await orchestrator.search(request)
        await monitor.drain()
        return response
    finally:
        await cache.close()


def _display_response(response: SearchResponse, output_path: Optional[Path]) -> None:
    metadata = response.metadata
    console.print(
        f"\n[bold green]{len(response.results)} listings[/bold green] from "
        f"{metadata.successful_sources}/{metadata.total_sources} sources "
        f"in {metadata.search_duration_ms:.0f}ms"
        + (" [dim](cached)[/dim]" if metadata.cache_hit else "")
    )

    if response.results:
        table = Table(title=f"Search {response.search_id}")
        table.add_column("Source", style="cyan")
        table.add_column("Name")
        table.add_column("Price", justify="right", style="green")
        table.add_column("Rating", justify="right", style="magenta")
        table.add_column("Reviews", justify="right")
        table.add_column("Availability", style="yellow")

        for listing in response.results:
            table.add_row(
                listing.source_id,
                listing.name,
                f"{listing.price / 100:,.2f} {listing.currency}",
                f"{listing.rating:.1f}" if listing.rating is not None else "N/A",
                str(listing.review_count) if listing.review_count is not None else "N/A",
                listing.availability.value,
            )
        console.print(table)

    if output_path:
        console.print(f"[bold]Output saved to:[/bold] {output_path}")
    console.print()


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option("--acknowledge", "alert_id", help="Acknowledge the alert with this id")
@click.option("--by", "acknowledged_by", default="cli", show_default=True, help="Who acknowledges")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of tables")
def health(config: Path, alert_id: Optional[str], acknowledged_by: str, as_json: bool) -> None:
    """Show persisted source health and recent alerts."""
    try:
        engine_config = _load_config(config, {})
        monitor, acknowledged = asyncio.run(_load_health(engine_config, alert_id, acknowledged_by))
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)

    if alert_id is not None:
        if acknowledged:
            console.print(f"[green]Acknowledged alert {alert_id}[/green]")
        else:
            console.print(f"[red]No alert with id {alert_id}[/red]")
            sys.exit(1)

    records = monitor.get_all_records()
    alerts = monitor.get_alerts(limit=20)
    formatter = JSONOutputFormatter()
    if as_json:
        click.echo(formatter.dumps(formatter.format_system_health(monitor.system_health(), records, alerts)).decode())
        return

    _display_health(monitor, records, alerts)


async def _load_health(
    config: EngineConfig,
    alert_id: Optional[str],
    acknowledged_by: str,
) -> Tuple[HealthMonitor, bool]:
    cache = create_cache(config.redis_url)
    monitor = HealthMonitor(cache=cache, config=config, logger=StructuredLogger(level=config.log_level))
    try:
        await monitor.load_persisted_data()
        await monitor.run_health_check()
        acknowledged = False
        if alert_id is not None:
            acknowledged = await monitor.acknowledge_alert(alert_id, acknowledged_by)
        return monitor, acknowledged
    finally:
        await cache.close()


def _display_health(monitor: HealthMonitor, records: List, alerts: List) -> None:
    summary = monitor.system_health()
    style = STATUS_STYLES[summary.overall_status.value]
    console.print(
        f"\n[bold]Overall:[/bold] [{style}]{summary.overall_status.value}[/{style}] "
        f"({summary.healthy_sources} healthy, {summary.warning_sources} warning, "
        f"{summary.critical_sources} critical, {summary.unknown_sources} unknown; "
        f"{summary.active_alerts} active alerts)\n"
    )

    if records:
        table = Table(title="Source Health")
        table.add_column("Source", style="cyan")
        table.add_column("Status")
        table.add_column("Success Rate", justify="right")
        table.add_column("Avg Response", justify="right")
        table.add_column("Requests", justify="right")
        table.add_column("Errors", justify="right", style="yellow")
        table.add_column("Last Error")

        for record in records:
            status_style = STATUS_STYLES[record.status.value]
            table.add_row(
                f"{record.source_name} ({record.source_id})",
                f"[{status_style}]{record.status.value}[/{status_style}]",
                f"{record.success_rate:.1f}%",
                f"{record.average_response_time_ms:.0f}ms",
                str(record.total_requests),
                str(record.error_count),
                record.last_error or "",
            )
        console.print(table)

    if alerts:
        alert_table = Table(title="Recent Alerts")
        alert_table.add_column("Id", style="dim")
        alert_table.add_column("Type")
        alert_table.add_column("Message")
        alert_table.add_column("Ack", justify="center")

        for alert in alerts:
            alert_table.add_row(
                alert.id,
                alert.type.value,
                alert.message,
                "yes" if alert.acknowledged else "",
            )
        console.print(alert_table)
    console.print()


if __name__ == "__main__":
    cli()
