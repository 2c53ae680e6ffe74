#!/usr/bin/env python3
"""
StreamFeed - Content Stream Ingestion
=====================================

Main application entry point with CLI interface for management and manual runs.

Usage:
    python main.py --help                    # Show all commands
    python main.py check-config              # Validate configuration
    python main.py init-db                   # Initialize database and staging area
    python main.py status                    # Remote queue and staging status
    python main.py import [--delete]         # Download queued items and import them
    python main.py import-local              # Import already staged documents
    python main.py run-scheduler [--once]    # Run the import schedule
    python main.py purge-staging --yes       # Remove staged documents and assets
"""

import sys
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from streamfeed.config.settings import get_settings
from streamfeed.database.schema import DatabaseSchema
from streamfeed.database.connection import get_db_manager
from streamfeed.database.models import ImportOutcome, RecordStatus
from streamfeed.pipeline.factory import build_coordinator
from streamfeed.remote.queue_client import HttpQueueClient
from streamfeed.scheduler.import_scheduler import ImportScheduler
from streamfeed.staging.store import StagingStore
from streamfeed.storage.record_repository import RecordRepository
from streamfeed.utils.logging import configure_application_logging
from streamfeed.utils.exceptions import StreamFeedError, get_user_friendly_message

console = Console()
logger = logging.getLogger(__name__)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, debug):
    """StreamFeed - Content Stream feed ingestion."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _setup_logging(ctx) -> None:
    settings = get_settings()
    configure_application_logging(
        log_level="DEBUG" if ctx.obj.get('debug') else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )


@cli.command()
def check_config():
    """Validate configuration and environment variables."""
    console.print("[bold blue]🔧 Checking StreamFeed Configuration[/bold blue]")

    try:
        settings = get_settings()

        table = Table(title="Configuration Status")
        table.add_column("Component", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Details")

        checks = [
            ("Feed", _check_feed_config),
            ("Staging", _check_staging_config),
            ("Publishing", _check_publishing_config),
            ("Schedule", _check_schedule_config),
            ("Database", _check_database_config),
            ("Logging", _check_logging_config),
        ]

        all_passed = True
        for name, check_func in checks:
            status, details = check_func(settings)
            table.add_row(name, "✅ Valid" if status else "❌ Invalid", details)
            if not status:
                all_passed = False

        console.print(table)

        if all_passed:
            console.print("[bold green]✅ All configuration checks passed![/bold green]")
            sys.exit(0)
        else:
            console.print("[bold red]❌ Configuration validation failed[/bold red]")
            sys.exit(1)

    except StreamFeedError as e:
        console.print(f"[bold red]❌ Configuration error: {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)


@cli.command()
def init_db():
    """Initialize database schema and staging directories."""
    console.print("[bold blue]🗄️ Initializing StreamFeed[/bold blue]")

    try:
        settings = get_settings()
        schema = DatabaseSchema(settings.database.path)
        schema.create_tables()

        if not schema.verify_schema():
            console.print("[bold red]❌ Database schema verification failed[/bold red]")
            sys.exit(1)

        staging = StagingStore(settings.staging)
        staging.ensure_layout()

        info = get_db_manager(settings.database.path).get_database_info()

        info_table = Table(title="StreamFeed Storage")
        info_table.add_column("Property", style="cyan")
        info_table.add_column("Value", style="green")
        info_table.add_row("Database Path", settings.database.path)
        info_table.add_row("Database Size", f"{info['database_size_mb']:.2f} MB")
        info_table.add_row("Staging Root", str(staging.root))
        info_table.add_row("Assets", str(staging.assets_root))
        console.print(info_table)

        console.print("[bold green]✅ Initialized successfully![/bold green]")

    except StreamFeedError as e:
        console.print(f"[bold red]❌ Initialization error: {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)


@cli.command()
@click.option('--local-only', is_flag=True, help='Skip the remote queue lookup')
@click.option('--show-items', is_flag=True, help='List every queued item')
def status(local_only, show_items):
    """Show remote queue size and staging counts."""
    settings = get_settings()
    staging = StagingStore(settings.staging)
    queued = []

    table = Table(title="StreamFeed Status")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green")

    if not local_only:
        if not settings.feed.has_credentials:
            table.add_row("Remote queue", "credentials not configured")
        else:
            client = HttpQueueClient(settings.feed)
            try:
                if show_items:
                    queued = list(client.get_content_list_all(page_size=settings.feed.page_size))
                    table.add_row("Remote queue", f"{len(queued)} items")
                else:
                    page = client.list(max_results=settings.feed.page_size, offset=0)
                    table.add_row("Remote queue", f"{page.total_in_queue} items")
            except StreamFeedError as e:
                table.add_row("Remote queue", f"[red]{get_user_friendly_message(e)}[/red]")

    table.add_row("Pending staged documents", str(staging.pending_count()))
    table.add_row("Archived documents", str(staging.archived_count()))
    table.add_row("Quarantined documents", str(staging.quarantined_count()))
    _add_record_counts(table, settings)
    console.print(table)

    if queued:
        items = Table(title="Queued Items")
        items.add_column("UID", style="cyan")
        items.add_column("Title")
        items.add_column("Published")
        for item in queued:
            published = item.published_at.isoformat() if item.published_at else "-"
            items.add_row(item.uid, item.title, published)
        console.print(items)


def _add_record_counts(table: Table, settings) -> None:
    db_path = Path(settings.database.path)
    if not db_path.exists() or not DatabaseSchema(str(db_path)).verify_schema():
        table.add_row("Host records", "database not initialized")
        return

    records = RecordRepository(get_db_manager(settings.database.path, pool_size=settings.database.pool_size))
    by_status = ", ".join(f"{records.count_records(s)} {s.name.lower()}" for s in RecordStatus)
    table.add_row("Host records", f"{records.count_records()} ({by_status})")


@cli.command(name='import')
@click.option('--delete/--no-delete', default=False,
              help='Delete downloaded items from the remote queue (default: keep)')
@click.pass_context
def import_command(ctx, delete):
    """Download queued items and import all staged documents."""
    _setup_logging(ctx)
    settings = get_settings()

    if not settings.feed.has_credentials:
        console.print("[bold red]❌ Username, password, and feed ID are required[/bold red]")
        sys.exit(1)

    console.print("[bold blue]📥 Importing from Content Stream[/bold blue]")
    try:
        outcome = build_coordinator(settings).run_cycle(delete_after_download=delete)
    except StreamFeedError as e:
        console.print(f"[bold red]❌ Import error: {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)

    _render_outcome(outcome)
    sys.exit(0 if not outcome.errors else 1)


@cli.command()
@click.pass_context
def import_local(ctx):
    """Import documents already in the staging area."""
    _setup_logging(ctx)
    console.print("[bold blue]📂 Importing staged documents[/bold blue]")

    try:
        outcome = build_coordinator(get_settings()).import_staged()
    except StreamFeedError as e:
        console.print(f"[bold red]❌ Import error: {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)

    _render_outcome(outcome)
    sys.exit(0 if not outcome.errors else 1)


@cli.command()
@click.option('--once', is_flag=True, help='Run a cycle if one is due, then exit')
@click.pass_context
def run_scheduler(ctx, once):
    """Run scheduled imports."""
    _setup_logging(ctx)
    settings = get_settings()

    try:
        scheduler = ImportScheduler(
            build_coordinator(),
            settings.schedule,
            delete_after_download=settings.feed.delete_after_download,
            settings_loader=None if once else lambda: get_settings(reload=True),
        )
        if once:
            outcome = scheduler.run_pending()
            if outcome is None:
                console.print(f"[yellow]Nothing due; next run at {scheduler.next_run.isoformat()}[/yellow]")
            else:
                _render_outcome(outcome)
            return

        console.print(f"[bold blue]⏰ Scheduler running ({settings.schedule.frequency.value})[/bold blue]")
        scheduler.run_forever()

    except StreamFeedError as e:
        console.print(f"[bold red]❌ Scheduler error: {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)


@cli.command()
@click.option('--yes', is_flag=True, help='Confirm removal without prompting')
def purge_staging(yes):
    """Remove all staged documents, assets and archives."""
    settings = get_settings()
    staging = StagingStore(settings.staging)

    if not yes and not click.confirm(f"Remove everything under {staging.root}?"):
        console.print("[yellow]Purge cancelled[/yellow]")
        return

    removed = staging.purge()
    console.print(f"[bold green]✅ Staging area purged ({removed} pending documents removed)[/bold green]")


def _render_outcome(outcome: ImportOutcome) -> None:
    if outcome.skipped_run:
        console.print("[yellow]⏭️ Another import cycle is running; nothing done[/yellow]")
        return

    table = Table(title="Import Outcome")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green")
    if outcome.total_in_queue is not None:
        table.add_row("In remote queue", str(outcome.total_in_queue))
    table.add_row("Downloaded", str(outcome.downloaded))
    table.add_row("Imported", str(outcome.imported))
    table.add_row("Duplicates skipped", str(outcome.skipped_duplicates))
    table.add_row("Removed from queue", str(outcome.remote_deleted))
    table.add_row("Quarantined", str(outcome.quarantined))
    table.add_row("Errors", str(len(outcome.errors)))
    console.print(table)

    if outcome.errors:
        errors = Table(title="Errors")
        errors.add_column("Stage", style="yellow")
        errors.add_column("Item")
        errors.add_column("Cause", style="red")
        for entry in outcome.errors:
            errors.add_row(entry.stage, entry.ref, entry.cause)
        console.print(errors)

    console.print(f"Finished in {outcome.duration_seconds:.1f}s")


# Helper functions for configuration checks
def _check_feed_config(settings) -> tuple[bool, str]:
    if not settings.feed.has_credentials:
        return False, "Username, password, and feed ID are required"
    tls = "on" if settings.feed.verify_tls else "OFF"
    return True, f"Endpoint: {settings.feed.endpoint_url}, TLS verify: {tls}"


def _check_staging_config(settings) -> tuple[bool, str]:
    try:
        Path(settings.staging.root).mkdir(parents=True, exist_ok=True)
        return True, f"Root: {settings.staging.root}"
    except OSError as e:
        return False, str(e)


def _check_publishing_config(settings) -> tuple[bool, str]:
    publishing = settings.publishing
    return True, (
        f"Status: {publishing.post_status.value}, Author: {publishing.author_id}, "
        f"Category: {publishing.category_id}"
    )


def _check_schedule_config(settings) -> tuple[bool, str]:
    schedule = settings.schedule
    if not schedule.enabled:
        return True, "Disabled"
    return True, f"{schedule.frequency.value} from {schedule.start_datetime.isoformat()}"


def _check_database_config(settings) -> tuple[bool, str]:
    try:
        Path(settings.database.path).parent.mkdir(parents=True, exist_ok=True)
        return True, f"Path: {settings.database.path}"
    except OSError as e:
        return False, str(e)


def _check_logging_config(settings) -> tuple[bool, str]:
    try:
        if settings.logging.file_path:
            Path(settings.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
        return True, f"Level: {settings.logging.level.value}, Console: {settings.logging.console_logging}"
    except OSError as e:
        return False, str(e)


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 StreamFeed interrupted by user[/yellow]")
        sys.exit(130)
