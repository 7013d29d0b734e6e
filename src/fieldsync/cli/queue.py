"""Queue commands for the fieldsync CLI.

Commands:
- status: Show queue counters and device id
- pending: List queued operations
- drain: Push queued operations to the remote database
- retry-all: Reset failed operations and drain
- clear: Drop queued operations (and optionally uploads)
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING

import click

from fieldsync.cli import config as cli_config
from fieldsync.firebase import FirebaseRestStore
from fieldsync.status import StatusNotifier
from fieldsync.sync.engine import RecordSyncEngine
from fieldsync.sync.queue import OperationQueue, UploadQueue

if TYPE_CHECKING:
    from fieldsync.core.storage import SQLiteStore
    from fieldsync.sync.types import DrainResult


def _open_queues(
    store: SQLiteStore, config: dict[str, str]
) -> tuple[OperationQueue, UploadQueue]:
    engine_config = cli_config.engine_config(config)
    notifier = StatusNotifier()
    operations = OperationQueue(store, engine_config.queue_key, notifier)
    uploads = UploadQueue(store, engine_config.upload_queue_key, notifier)
    operations.load()
    uploads.load()
    return operations, uploads


def _run_engine(retry: bool) -> DrainResult:
    """Connect to the remote database and drain the queue once."""
    config = cli_config.load_config()
    remote_config = cli_config.remote_config(config)
    if remote_config is None:
        click.echo("Error: No database configured. Run 'fieldsync configure' first.", err=True)
        sys.exit(1)

    with cli_config.open_store() as store, FirebaseRestStore(remote_config) as remote:
        if not remote.health_check():
            click.echo(f"Error: Cannot reach {remote_config.database_url}", err=True)
            sys.exit(1)

        engine = RecordSyncEngine(remote, store, cli_config.engine_config(config))
        engine.load()
        engine.set_connected(True)
        try:
            return engine.retry_all() if retry else engine.process_queue()
        finally:
            engine.close()


def _echo_drain(result: DrainResult) -> None:
    click.echo(
        f"Synced: {result.processed}  Failed: {result.failed}  "
        f"Skipped: {result.skipped}  Pending: {result.pending}"
    )
    if result.auth_required:
        click.echo("Authentication failed - update the token with 'fieldsync configure'.", err=True)
        sys.exit(1)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def status(as_json: bool) -> None:
    """Show queue counters and device id."""
    config = cli_config.load_config()
    with cli_config.open_store() as store:
        operations, uploads = _open_queues(store, config)
        device_id = config.get("device_id") or store.get_item(
            cli_config.engine_config(config).device_key
        )
        info = {
            "device_id": device_id,
            "database_url": config.get("database_url"),
            "pending_operations": len(operations),
            "failed_operations": operations.terminal_count(),
            "pending_uploads": len(uploads),
        }

    if as_json:
        click.echo(json.dumps(info, indent=2))
        return

    click.echo(f"Device:     {info['device_id'] or '(not generated yet)'}")
    click.echo(f"Database:   {info['database_url'] or '(not configured)'}")
    click.echo(f"Pending:    {info['pending_operations']}")
    click.echo(f"Failed:     {info['failed_operations']}")
    click.echo(f"Uploads:    {info['pending_uploads']}")


@click.command()
def pending() -> None:
    """List queued operations in the order they will be sent."""
    config = cli_config.load_config()
    with cli_config.open_store() as store:
        operations, uploads = _open_queues(store, config)
        items = operations.list_pending()
        upload_items = uploads.list_pending()

    if not items and not upload_items:
        click.echo("Queue is empty.")
        return

    for op in items:
        marker = " [FAILED]" if op.is_terminal else ""
        click.echo(
            f"{op.id[:8]}  {op.kind.value:<12} {op.address}  "
            f"attempts={op.attempts}{marker}"
        )
        if op.last_error:
            click.echo(f"          last error: {op.last_error}")

    for item in upload_items:
        click.echo(
            f"{item.id[:15]}  upload       {item.filename}  "
            f"category={item.category or '-'} attempts={item.attempts}"
        )


@click.command()
def drain() -> None:
    """Push queued operations to the remote database."""
    _echo_drain(_run_engine(retry=False))


@click.command("retry-all")
def retry_all() -> None:
    """Reset attempt counters (failed operations included) and drain."""
    _echo_drain(_run_engine(retry=True))


@click.command()
@click.option("--uploads", is_flag=True, help="Also drop queued uploads.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def clear(uploads: bool, yes: bool) -> None:
    """Drop queued operations. Unsent changes are lost."""
    config = cli_config.load_config()
    with cli_config.open_store() as store:
        operations, upload_queue = _open_queues(store, config)
        count = len(operations) + (len(upload_queue) if uploads else 0)
        if count == 0:
            click.echo("Queue is empty.")
            return

        if not yes and not click.confirm(f"Drop {count} queued items?"):
            click.echo("Aborted.")
            return

        dropped = operations.clear()
        if uploads:
            dropped += upload_queue.clear()

    click.echo(f"Dropped {dropped} queued items.")
