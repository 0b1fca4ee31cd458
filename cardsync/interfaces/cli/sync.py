"""Synchronization CLI for cardsync."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from cardsync.infrastructure.observability import get_metrics_summary
from cardsync.interfaces.cli.context import build_cli_context
from cardsync.services.dto import SyncRequestDTO
from cardsync.services.sync import (SOURCES, SyncConfigurationError,
                                    SyncResult, TargetNotFoundError)

console = Console()

_STATE_STYLES = {
    "completed": "green",
    "partial": "yellow",
    "error": "red",
    "cancelled": "magenta",
}


def render_result(result: SyncResult) -> None:
    table = Table(title=f"Sync {result.operation_id}")
    table.add_column("Target", style="bold")
    table.add_column("Name")
    table.add_column("Fetched", justify="right")
    table.add_column("Upserted", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Stored", justify="right")
    table.add_column("Stop")
    table.add_column("State")
    table.add_column("ms", justify="right")
    table.add_column("Error")
    for t in result.targets:
        style = _STATE_STYLES.get(t.state, "white")
        table.add_row(
            t.target_id,
            t.name or "",
            str(t.fetched),
            str(t.upserted),
            str(t.skipped),
            str(t.stored),
            t.stop_reason or "",
            f"[{style}]{t.state}[/{style}]",
            str(t.ms),
            t.error or "",
        )
    console.print(table)
    summary = result.summary
    colour = "green" if result.success else "red"
    console.print(
        f"[{colour}]{result.stop_reason}[/{colour}]: fetched={summary.fetched}, "
        f"upserted={summary.upserted}, skipped={summary.skipped}, "
        f"rate={summary.rate_rps}/s fetched, {summary.rate_ups}/s upserted "
        f"in {result.duration_seconds:.2f}s"
    )
    if result.dry_run:
        console.print("[yellow]Dry-run: nothing was written.[/yellow]")


def render_metrics(summary: dict[str, object]) -> None:
    """Print the in-process counters and histogram averages collected during the run."""
    table = Table(title="Metrics")
    table.add_column("Metric", style="bold")
    table.add_column("Labels")
    table.add_column("Value", justify="right")
    for name, series in sorted(summary["counters"].items()):
        for labels, value in series.items():
            table.add_row(name, labels, f"{value:g}")
    for name, series in sorted(summary["histograms"].items()):
        for labels, stats in series.items():
            table.add_row(name, labels, f"n={stats['count']} avg={stats['avg']:.3f}s")
    console.print(table)


@click.command(name="sync")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database file.")
@click.option(
    "--source",
    type=click.Choice(SOURCES, case_sensitive=False),
    default="tcgcsv",
    show_default=True,
    help="Provider to sync from.",
)
@click.option("--category", "category_id", default=None, help="Category (CSV) or game (JSON API) id.")
@click.option(
    "--group",
    "group_ids",
    multiple=True,
    help="Explicit group/set id; repeat for several. Defaults to every known target.",
)
@click.option("--name-filter", default=None, help="Only targets whose name contains this text.")
@click.option("--page", type=int, default=None, help="First page to fetch (JSON API).")
@click.option("--page-size", type=int, default=None, help="Records per page (JSON API).")
@click.option("--max-pages", type=int, default=None, help="Safety cap on pages per target.")
@click.option("--dry-run", is_flag=True, default=False, help="Fetch and parse but write nothing.")
@click.option("--include-sealed/--exclude-sealed", default=True, show_default=True)
@click.option("--include-singles/--exclude-singles", default=True, show_default=True)
@click.option(
    "--metrics", "show_metrics", is_flag=True, default=False, help="Print collected metrics after the run."
)
def sync(
    db_path: str | None,
    source: str,
    category_id: str | None,
    group_ids: tuple[str, ...],
    name_filter: str | None,
    page: int | None,
    page_size: int | None,
    max_pages: int | None,
    dry_run: bool,
    include_sealed: bool,
    include_singles: bool,
    show_metrics: bool,
) -> None:
    """Synchronize provider data for a category or explicit groups."""
    context = build_cli_context(db_path)
    service = context.sync_service()
    request = SyncRequestDTO(
        source=source.lower(),
        category_id=category_id,
        group_ids=list(group_ids) or None,
        name_filter=name_filter,
        page=page,
        page_size=page_size,
        max_pages=max_pages,
        dry_run=dry_run,
        include_sealed=include_sealed,
        include_singles=include_singles,
    )
    try:
        with console.status("Running sync..."):
            result = asyncio.run(service.run(request))
    except SyncConfigurationError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise SystemExit(2)
    except TargetNotFoundError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        raise SystemExit(1)
    render_result(result)
    if show_metrics:
        render_metrics(get_metrics_summary())
    if not result.success:
        raise SystemExit(1)


@click.command(name="discover")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database file.")
@click.option(
    "--source",
    type=click.Choice(SOURCES, case_sensitive=False),
    default="tcgcsv",
    show_default=True,
)
@click.option("--category", "category_id", required=True, help="Category or game id.")
def discover(db_path: str | None, source: str, category_id: str) -> None:
    """List groups/sets from the provider and store them as sync targets."""
    service = build_cli_context(db_path).sync_service()
    try:
        targets = asyncio.run(service.discover_targets(source.lower(), category_id))
    except SyncConfigurationError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise SystemExit(2)
    if not targets:
        console.print("[yellow]No targets found.[/yellow]")
        return
    table = Table(title=f"{source} targets for {category_id}")
    table.add_column("Id", style="bold")
    table.add_column("Name")
    table.add_column("Code")
    table.add_column("Expected", justify="right")
    for target in targets:
        table.add_row(
            target.external_id,
            target.name or "",
            target.code or "",
            "" if target.expected_count is None else str(target.expected_count),
        )
    console.print(table)
