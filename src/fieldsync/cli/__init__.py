"""Command-line interface for fieldsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set the remote database and device settings
- status: Show queue counters and device id
- pending: List queued operations
- drain: Push queued operations to the remote database
- retry-all: Reset failed operations and drain
- clear: Drop queued operations
"""

from __future__ import annotations

import logging

import click

from fieldsync.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from fieldsync.cli.configure import configure
from fieldsync.cli.queue import clear, drain, pending, retry_all, status


@click.group()
@click.version_option(package_name="fieldsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """fieldsync - offline-tolerant record and asset synchronization."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Setup
cli.add_command(configure)

# Queue commands
cli.add_command(status)
cli.add_command(pending)
cli.add_command(drain)
cli.add_command(retry_all)
cli.add_command(clear)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
