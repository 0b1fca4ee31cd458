"""Status inspection and control-signal commands."""

from __future__ import annotations

from datetime import timedelta

import click
from rich.console import Console
from rich.table import Table

from cardsync.domain.models import SyncStatus
from cardsync.interfaces.cli.context import build_cli_context
from cardsync.services.sync import list_statuses, list_stuck, reset_status
from cardsync.services.sync_service import BULK_SYNC

console = Console()


def _fmt(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def render_statuses(rows: list[SyncStatus], title: str) -> None:
    table = Table(title=title)
    table.add_column("Source")
    table.add_column("Target", style="bold")
    table.add_column("State")
    table.add_column("Synced", justify="right")
    table.add_column("Last synced")
    table.add_column("Updated")
    table.add_column("Operation")
    table.add_column("Error")
    for row in rows:
        table.add_row(
            row.source,
            row.target_id,
            row.state.value,
            str(row.synced_count),
            _fmt(row.last_synced_at),
            _fmt(row.updated_at),
            row.operation_id or "",
            row.last_error or "",
        )
    console.print(table)


@click.command(name="status")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database file.")
@click.option("--source", default=None, help="Only show this source.")
@click.option("--stuck", is_flag=True, default=False, help="Only rows stuck in syncing.")
@click.option(
    "--minutes",
    type=float,
    default=None,
    help="Stuck threshold in minutes (defaults to the configured value).",
)
def status(db_path: str | None, source: str | None, stuck: bool, minutes: float | None) -> None:
    """Show per-target sync status."""
    context = build_cli_context(db_path)
    if stuck:
        threshold = (
            timedelta(minutes=minutes) if minutes is not None else context.settings.stuck_threshold
        )
        rows = list_stuck(threshold, context.db_path)
        if source:
            rows = [r for r in rows if r.source == source]
        if not rows:
            console.print("[green]No stuck syncs.[/green]")
            return
        render_statuses(rows, "Stuck syncs")
        return
    rows = list_statuses(source, context.db_path)
    if not rows:
        console.print("[yellow]No sync status recorded yet.[/yellow]")
        return
    render_statuses(rows, "Sync status")


@click.command(name="reset")
@click.argument("source")
@click.argument("target_id")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database file.")
@click.option(
    "--state",
    type=click.Choice(["error", "idle"]),
    default="error",
    show_default=True,
)
@click.option("--reason", default=None, help="Message stored as last_error.")
def reset(db_path: str | None, source: str, target_id: str, state: str, reason: str | None) -> None:
    """Manually move a stuck SOURCE/TARGET_ID status row to error or idle."""
    context = build_cli_context(db_path)
    row = reset_status(source, target_id, state, reason=reason, db_path=context.db_path)
    console.print(f"[green]{source}/{target_id} is now {row.state.value if row else state}[/green]")


@click.command(name="cancel")
@click.argument("operation_id", default="*")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database file.")
@click.option("--type", "operation_type", default=BULK_SYNC, show_default=True)
@click.option("--by", "created_by", default="cli", show_default=True)
def cancel(db_path: str | None, operation_id: str, operation_type: str, created_by: str) -> None:
    """Ask a running sync (or every sync with '*') to stop at its next checkpoint."""
    service = build_cli_context(db_path).sync_service()
    service.request_cancel(operation_id, operation_type=operation_type, created_by=created_by)
    console.print(f"[yellow]Cancellation requested for {operation_type}/{operation_id}[/yellow]")


@click.command(name="clear-signal")
@click.argument("operation_id", default="*")
@click.option("--db", "db_path", default=None, help="Path to the SQLite database file.")
@click.option("--type", "operation_type", default=BULK_SYNC, show_default=True)
def clear_signal(db_path: str | None, operation_id: str, operation_type: str) -> None:
    """Remove a control signal so new runs are not cancelled by it."""
    service = build_cli_context(db_path).sync_service()
    removed = service.clear_signal(operation_id, operation_type=operation_type)
    console.print(f"Removed {removed} signal(s) for {operation_type}/{operation_id}")
