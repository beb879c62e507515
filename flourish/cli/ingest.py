"""
Ingestion CLI Commands
======================

CLI commands for syncing the plant catalog from upstream APIs.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from flourish.core.enums import SyncStatus
from flourish.db.store import StoreUnavailable, open_store
from flourish.ingestion.fetcher import CancelToken
from flourish.ingestion.pipeline import IngestionProgress, create_pipeline
from flourish.ingestion.registry import SourceConfig, SourceRegistry, load_registry

console = Console()
ingest_app = typer.Typer(help="Catalog ingestion commands")


def _load_source(name: str) -> tuple[SourceRegistry, SourceConfig]:
    registry = load_registry()
    source_config = registry.get_source(name)

    if source_config is None:
        rprint(f"[red]Error:[/red] Source '{name}' not found")
        rprint("\nAvailable sources:")
        for s in registry.list_sources():
            status = "[green]enabled[/green]" if s.enabled else "[yellow]disabled[/yellow]"
            rprint(f"  • {s.name} ({status})")
        raise typer.Exit(1)

    if not source_config.enabled:
        rprint(f"[yellow]Warning:[/yellow] Source '{name}' is disabled")
        if not typer.confirm("Run anyway?"):
            raise typer.Exit(0)

    if not source_config.api_token:
        rprint(f"[yellow]Warning:[/yellow] No API token configured for '{name}'")

    return registry, source_config


def _run(
    mode: str,
    source: str,
    start_id: int,
    end_id: int,
    max_requests: int | None,
    timeout: float | None,
    stop_past_end: bool = False,
) -> None:
    if start_id <= 0 or end_id <= 0 or start_id > end_id:
        rprint(f"[red]Error:[/red] Invalid id range [{start_id}, {end_id}]")
        raise typer.Exit(2)

    registry, source_config = _load_source(source)
    global_config = registry.global_config

    rprint(f"\n[bold]Starting {mode} sync for source:[/bold] {source}")
    rprint(f"  Ids: {start_id}-{end_id}")
    rprint(f"  Request ceiling: {max_requests or source_config.rate_limit.max_requests_per_run}")

    try:
        store = open_store()
    except StoreUnavailable as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    cancel_token = CancelToken.with_timeout(timeout) if timeout else None
    pipeline = create_pipeline(
        source_config,
        store,
        user_agent=global_config.user_agent,
        timeout=global_config.request_timeout,
        cancel_token=cancel_token,
        max_requests_per_run=max_requests,
        stop_past_end=stop_past_end,
    )
    try:
        with console.status("[bold blue]Syncing...[/bold blue]"):
            if mode == "details":
                progress = pipeline.sync_details_range(start_id, end_id)
            else:
                progress = pipeline.sync_range(start_id, end_id)
    finally:
        pipeline.fetcher.close()
        store.close()

    _display_progress(progress)
    if progress.status == SyncStatus.FAILED:
        raise typer.Exit(1)


@ingest_app.command("list")
def ingest_list(
    source: str = typer.Option(..., "--source", "-s", help="Source name to sync"),
    start_id: int = typer.Option(1, "--start", help="First species id to keep"),
    end_id: int = typer.Option(..., "--end", help="Last species id to keep"),
    max_requests: Optional[int] = typer.Option(
        None, "--max-requests", "-m", help="Override the per-run request ceiling"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Cancel the run after this many seconds"
    ),
    stop_past_end: bool = typer.Option(
        False, "--stop-past-end", help="Stop once a page only holds ids beyond --end"
    ),
) -> None:
    """
    Page through a source's species list and store the entries in range.

    Examples:
        flourish ingest list --source trefle --start 1 --end 3000
        flourish ingest list -s perenual --end 500 -m 10
    """
    _run("list", source, start_id, end_id, max_requests, timeout, stop_past_end)


@ingest_app.command("details")
def ingest_details(
    source: str = typer.Option(..., "--source", "-s", help="Source name to sync"),
    start_id: int = typer.Option(..., "--start", help="First species id to fetch"),
    end_id: int = typer.Option(..., "--end", help="Last species id to fetch"),
    max_requests: Optional[int] = typer.Option(
        None, "--max-requests", "-m", help="Override the per-run request ceiling"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Cancel the run after this many seconds"
    ),
) -> None:
    """
    Fetch the detail record of every species id in range.

    Examples:
        flourish ingest details --source perenual --start 1 --end 99
    """
    _run("details", source, start_id, end_id, max_requests, timeout)


@ingest_app.command("sources")
def list_sources(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Show all sources including disabled"),
) -> None:
    """
    List configured catalog sources.

    Examples:
        flourish ingest sources
        flourish ingest sources --all
    """
    registry = load_registry()
    sources = registry.list_sources() if all_sources else registry.list_enabled_sources()

    if not sources:
        rprint("[yellow]No sources configured[/yellow]")
        rprint("\nAdd sources to config/sources.yaml")
        return

    table = Table(title="Catalog Sources")
    table.add_column("Name", style="bold")
    table.add_column("Base URL")
    table.add_column("Flavor")
    table.add_column("Status")
    table.add_column("Rate Limit")
    table.add_column("Token")

    for source in sources:
        status = "[green]enabled[/green]" if source.enabled else "[yellow]disabled[/yellow]"
        limit = source.rate_limit
        rate = f"{limit.requests_per_window}/{limit.window_seconds:.0f}s, max {limit.max_requests_per_run}"
        token = "[green]set[/green]" if source.api_token else "[red]missing[/red]"
        table.add_row(source.name, source.base_url, source.flavor.value, status, rate, token)

    console.print(table)


def _display_progress(progress: IngestionProgress) -> None:
    """Display sync progress in a formatted table."""
    result = progress.to_dict()
    status = result["status"]
    status_color = {
        "completed": "green",
        "running": "blue",
        "pending": "yellow",
        "cancelled": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    rprint(f"  Source: {result['source_name']} ({result['mode']})")

    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  Requests issued: {result['requests_issued']}")
    rprint(f"  Records fetched: {result['total_fetched']}")
    rprint(f"  Inserted: {result['total_inserted']}")
    rprint(f"  Updated: {result['total_updated']}")
    rprint(f"  Skipped: {result['total_skipped']}")
    rprint(f"  Last id processed: {result['last_id_processed']}")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:  # Show first 10
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")
