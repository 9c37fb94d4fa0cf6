"""
Ingestion CLI Commands
======================

CLI commands for sources, discovery runs, workers and maintenance jobs.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from redis.exceptions import RedisError
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from trivia_ingest.core.enums import JobStatus
from trivia_ingest.db.engine import get_session
from trivia_ingest.ingestion.adapters import get_adapter_info, list_adapters
from trivia_ingest.ingestion.jobs import (
    enqueue_index,
    get_job_status,
    recalibrate_cities,
    refresh_venue_photos,
    run_source_sync,
    sync_sources,
)
from trivia_ingest.ingestion.registry import ConfigurationError, get_default_registry

console = Console()
ingest_app = typer.Typer(help="Discovery and detail job commands")
sources_app = typer.Typer(help="Source management commands")
photos_app = typer.Typer(help="Venue photo cache commands")
cities_app = typer.Typer(help="City maintenance commands")
jobs_app = typer.Typer(help="Job management commands")

ingest_app.add_typer(jobs_app, name="jobs")


@ingest_app.command("run")
def run_ingestion(
    source: str = typer.Option(..., "--source", "-s", help="Source slug to index"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum venues to process"),
    sync: bool = typer.Option(False, "--sync", help="Run discovery and detail jobs in-process"),
) -> None:
    """
    Run discovery for a source.

    Examples:
        trivia-ingest ingest run --source=sample --sync
        trivia-ingest ingest run -s quizmeisters -l 10
    """
    registry = get_default_registry()
    source_config = registry.get_source(source)

    if source_config is None:
        rprint(f"[red]Error:[/red] Source '{source}' not found")
        rprint("\nAvailable sources:")
        for s in registry.list_sources():
            status = "[green]enabled[/green]" if s.enabled else "[yellow]disabled[/yellow]"
            rprint(f"  • {s.slug} ({status})")
        raise typer.Exit(1)

    if not source_config.enabled:
        rprint(f"[red]Error:[/red] Source '{source}' is disabled in sources.yaml")
        raise typer.Exit(1)

    rprint(f"\n[bold]Starting discovery for source:[/bold] {source_config.name}")
    rprint(f"  Adapter: {source_config.adapter}")
    if limit:
        rprint(f"  Limit: {limit}")

    if sync:
        rprint("\n[dim]Running synchronously...[/dim]\n")

        with console.status("[bold blue]Ingesting...[/bold blue]"):
            result, job_results = asyncio.run(run_source_sync(source, limit))

        _display_job_result(result.to_dict())
        _display_detail_results(job_results)

        if result.status == JobStatus.FAILED:
            raise typer.Exit(1)
    else:
        rprint("\n[dim]Enqueueing discovery job...[/dim]")

        try:
            job_id = asyncio.run(enqueue_index(source, limit))
        except (OSError, RedisError) as e:
            rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
            rprint("\nMake sure Redis is running (REDIS_HOST / REDIS_PORT)")
            raise typer.Exit(1)

        if job_id is None:
            rprint("[yellow]A discovery job for this source is already queued[/yellow]")
            return
        rprint("\n[green]Job enqueued successfully![/green]")
        rprint(f"Job ID: [bold]{job_id}[/bold]")
        rprint("\nCheck status with:")
        rprint(f"  trivia-ingest ingest jobs status {job_id}")


@ingest_app.command("worker")
def start_worker(
    scraper: bool = typer.Option(
        False, "--scraper", help="Process the scraper queue (detail and lookup jobs)"
    ),
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start an arq worker.

    Run one worker for the default queue (discovery, cron maintenance)
    and one with --scraper for per-venue jobs.

    Examples:
        trivia-ingest ingest worker
        trivia-ingest ingest worker --scraper
    """
    from arq import run_worker

    from trivia_ingest.ingestion.jobs import ScraperWorkerSettings, WorkerSettings

    settings = ScraperWorkerSettings if scraper else WorkerSettings
    rprint(f"[bold]Starting {'scraper' if scraper else 'discovery'} worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(settings, burst=burst)
    except (OSError, RedisError) as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running (REDIS_HOST / REDIS_PORT)")
        raise typer.Exit(1)


# Sources subcommands


@sources_app.command("list")
def list_sources(
    all_sources: bool = typer.Option(
        False, "--all", "-a", help="Show all sources including disabled"
    ),
) -> None:
    """
    List configured sources.

    Examples:
        trivia-ingest sources list
        trivia-ingest sources list --all
    """
    registry = get_default_registry()
    sources = registry.list_sources() if all_sources else registry.list_enabled_sources()

    if not sources:
        rprint("[yellow]No sources configured[/yellow]")
        rprint("\nAdd sources to config/sources.yaml")
        return

    table = Table(title="Sources")
    table.add_column("Slug", style="bold")
    table.add_column("Name")
    table.add_column("Adapter")
    table.add_column("Status")
    table.add_column("Rate Limit")

    for source in sources:
        status = "[green]enabled[/green]" if source.enabled else "[yellow]disabled[/yellow]"
        rate = f"{source.rate_limit.requests_per_second}/s"
        table.add_row(source.slug, source.name, source.adapter, status, rate)

    console.print(table)


@sources_app.command("sync")
def sync_source_rows() -> None:
    """
    Create or update a database row for every configured source.

    Examples:
        trivia-ingest sources sync
    """
    with get_session() as session:
        rows = sync_sources(session)
        names = [row.slug for row in rows]
    rprint(f"[green]Synced {len(names)} sources[/green]")
    for name in names:
        rprint(f"  • {name}")


@sources_app.command("adapters")
def list_source_adapters() -> None:
    """List available adapters."""
    table = Table(title="Available Adapters")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Class")

    for adapter_name in list_adapters():
        info = get_adapter_info(adapter_name)
        if info:
            table.add_row(info["name"], info["version"], info["class"])

    console.print(table)


# Maintenance subcommands


@photos_app.command("refresh")
def refresh_photos(
    max_venues: int = typer.Option(100, "--max", "-m", help="Maximum venues to refresh"),
) -> None:
    """
    Re-fetch Google Places photos for venues with a place id.

    Examples:
        trivia-ingest photos refresh --max 20
    """
    try:
        with console.status("[bold blue]Refreshing photos...[/bold blue]"):
            stats = asyncio.run(refresh_venue_photos({}, max_venues=max_venues))
    except ConfigurationError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    rprint(f"  Processed: {stats['processed']}")
    rprint(f"  Successful: [green]{stats['successful']}[/green]")
    rprint(f"  Failed: [red]{stats['failed']}[/red]")
    for venue_id in stats["failed_ids"][:10]:
        rprint(f"  • {venue_id}")


@cities_app.command("recalibrate")
def recalibrate() -> None:
    """
    Recompute city coordinates as the average of their venues.

    Examples:
        trivia-ingest cities recalibrate
    """
    stats = asyncio.run(recalibrate_cities({}))
    rprint(
        f"[green]Updated {stats['updated']}/{stats['total_cities']} cities[/green] "
        f"(skipped {stats['skipped']}, failed {stats['failed']}) in {stats['duration_ms']}ms"
    )


# Jobs subcommands


@jobs_app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID to check"),
    scraper: bool = typer.Option(False, "--scraper", help="Look the job up on the scraper queue"),
) -> None:
    """
    Check the status of a queued job.

    Examples:
        trivia-ingest ingest jobs status abc123
    """
    from trivia_ingest.ingestion.scheduler import SCRAPER_QUEUE

    try:
        result = asyncio.run(get_job_status(job_id, SCRAPER_QUEUE if scraper else None))
    except (OSError, RedisError) as e:
        rprint(f"[red]Error:[/red] Failed to get job status: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)

    if result is None:
        rprint(f"[yellow]Job '{job_id}' not found[/yellow]")
        raise typer.Exit(1)

    rprint(f"\n[bold]Job: {job_id}[/bold]")
    rprint(f"  Status: {result.get('status', 'unknown')}")
    if isinstance(result.get("result"), dict) and "source_slug" in result["result"]:
        _display_job_result(result["result"])


def _display_job_result(result: dict) -> None:
    """Display a discovery result."""
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "running": "blue",
        "pending": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    rprint(f"  Source: {result.get('source_slug', 'N/A')}")

    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  Venues discovered: {result.get('venues_discovered', 0)}")
    rprint(f"  Detail jobs enqueued: {result.get('jobs_enqueued', 0)}")
    rprint(f"  Duplicates skipped: {result.get('duplicates', 0)}")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")


def _display_detail_results(job_results: list[dict]) -> None:
    """Display per-venue outcomes from a sync run."""
    details = [r for r in job_results if "venue_name" in r]
    if not details:
        return

    table = Table(title="Venues")
    table.add_column("Venue", style="bold")
    table.add_column("Status")
    table.add_column("Event")
    table.add_column("Error")

    for detail in details:
        color = "green" if detail["status"] == "success" else "red"
        table.add_row(
            detail["venue_name"],
            f"[{color}]{detail['status']}[/{color}]",
            detail.get("event_action") or "",
            detail.get("error") or "",
        )
    console.print(table)
