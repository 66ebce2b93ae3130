"""CLI commands for synchronizing with the remote store."""

import logging
import sys
import time
from datetime import timedelta

import typer
from rich.console import Console
from rich.table import Table

from ..clients.remote import RemoteStoreClient
from ..config import Settings, load_settings
from ..exceptions import (
    ConfigurationError,
    SubTrackrError,
    SyncUnavailableError,
)
from ..models import MergeResult
from ..store import open_store
from .engine import SyncEngine
from .worker import SyncWorker

app = typer.Typer(
    name="sync",
    help="Synchronize subscriptions with the remote store",
)

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Downgrade httpx logging to DEBUG (network requests are too noisy at INFO)
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _remote_client(settings: Settings) -> RemoteStoreClient:
    """Build the remote client, failing if sync is not configured."""
    if not settings.remote_base_url:
        raise ConfigurationError(
            "Sync is not configured. Set REMOTE_BASE_URL (and REMOTE_API_KEY) "
            "in your environment or .env file."
        )
    return RemoteStoreClient(
        base_url=settings.remote_base_url,
        api_key=settings.remote_api_key,
        collection=settings.remote_collection,
        timeout=settings.http_timeout,
    )


def display_result(result: MergeResult):
    """Display the outcome of a sync run."""
    table = Table(title="Sync Result", show_header=True, header_style="bold magenta")
    table.add_column("Pulled", justify="right")
    table.add_column("Applied", justify="right")
    table.add_column("Pushed", justify="right")
    table.add_column("Conflicts resolved", justify="right")
    table.add_column("Deletions", justify="right")
    table.add_row(
        str(result.pulled),
        str(result.applied),
        str(result.pushed),
        str(result.conflicts),
        str(result.tombstones),
    )
    console.print(table)
    console.print(f"[dim]Cursor: {result.cursor}[/dim]")


@app.command()
def run(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Run one sync pass.

    Pulls remote changes, merges them into the local store, pushes local
    changes and advances the sync cursor. When the remote is unreachable,
    local changes are kept and pushed on the next run.
    """
    setup_logging(verbose)

    try:
        settings = load_settings()
        store = open_store(settings)

        with _remote_client(settings) as remote:
            engine = SyncEngine(store, remote)
            console.print("\n[bold blue]Synchronizing...[/bold blue]")
            result = engine.sync()

        display_result(result)
        console.print("\n[bold green]✓ Sync complete[/bold green]\n")

    except SyncUnavailableError as e:
        console.print(f"\n[yellow]Offline: {e}[/yellow]")
        console.print("[dim]Local changes are kept and will sync later.[/dim]\n")
    except SubTrackrError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "store" in locals():
            store.db.close()


@app.command()
def watch(
    interval: float | None = typer.Option(
        None, "--interval", "-i", help="Seconds between sync runs"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Keep syncing in the background until interrupted.

    Retries with exponential backoff while the remote is unreachable.
    """
    setup_logging(verbose)

    try:
        settings = load_settings()
        store = open_store(settings)

        with _remote_client(settings) as remote:
            engine = SyncEngine(store, remote)
            worker = SyncWorker(
                engine,
                interval=interval or settings.sync_interval_seconds,
                backoff_initial=settings.sync_backoff_initial_seconds,
                backoff_max=settings.sync_backoff_max_seconds,
            )
            worker.start()
            console.print("[bold blue]Background sync running. Ctrl+C to stop.[/bold blue]")
            try:
                while worker.running:
                    time.sleep(1)
            except KeyboardInterrupt:
                console.print("\n[yellow]Stopping...[/yellow]")
            finally:
                worker.stop()

        console.print(f"[green]Completed {worker.runs} sync run(s).[/green]")

    except SubTrackrError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "store" in locals():
            store.db.close()


@app.command()
def status(
    limit: int = typer.Option(10, "--limit", "-n", help="Recent changes to show"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the device id, sync cursor and unpushed changes."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        store = open_store(settings)

        pending = store.pending_changes()
        console.print("\n[bold]Sync status:[/bold]")
        console.print(f"  Device: {store.device_id}")
        console.print(f"  Remote: {settings.remote_base_url or '[dim]not configured[/dim]'}")
        console.print(f"  Cursor: {store.get_sync_cursor() or '[dim]never synced[/dim]'}")
        console.print(f"  Unpushed changes: {len(pending)}\n")

        changes = store.db.get_changes(limit=limit)
        if changes:
            table = Table(title="Recent changes", header_style="bold magenta")
            table.add_column("Seq", justify="right", style="dim")
            table.add_column("Record", width=8)
            table.add_column("Clock", justify="right")
            table.add_column("Kind")
            table.add_column("Pushed", justify="center")
            table.add_column("At")
            for change in changes:
                table.add_row(
                    str(change.seq),
                    change.record_id[:8],
                    str(change.clock),
                    "delete" if change.deleted else "update",
                    "✓" if change.pushed else "—",
                    change.created_at.strftime("%Y-%m-%d %H:%M"),
                )
            console.print(table)

    except SubTrackrError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "store" in locals():
            store.db.close()


@app.command()
def purge(
    days: int | None = typer.Option(
        None, "--days", help="Retention in days (defaults to TOMBSTONE_RETENTION_DAYS)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Physically remove old, already-pushed deletion markers."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        store = open_store(settings)

        retention = timedelta(days=days if days is not None else settings.tombstone_retention_days)
        purged = store.purge_tombstones(retention)
        console.print(f"[green]Purged {purged} deletion marker(s).[/green]")

    except SubTrackrError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "store" in locals():
            store.db.close()
