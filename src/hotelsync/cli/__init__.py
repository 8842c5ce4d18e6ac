"""Command-line interface for hotelsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- lanes list: List lanes with state and health
- lanes show: Show one lane in detail
- lanes reset: Reset a failed or retry-pending lane
- lanes auto-retry: Enable or disable automatic retries
- errors list: List error records
- errors resolve: Mark an error record resolved
- cleanup: Delete old messages, resolved errors and expired dedup entries
"""

from __future__ import annotations

from pathlib import Path

import click

from hotelsync import __version__
from hotelsync.cli.context import CliState
from hotelsync.cli.errors import errors
from hotelsync.cli.lanes import lanes
from hotelsync.cli.maintenance import cleanup


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="JSON config file (default: HOTELSYNC_CONFIG).",
)
@click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to database file (default: HOTELSYNC_DB_PATH or ./hotelsync.db).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, db_path: Path | None) -> None:
    """hotelsync - Hotel distribution synchronization engine."""
    ctx.obj = CliState(config_path=config_path, db_path=db_path)


# Lane commands
cli.add_command(lanes)

# Error commands
cli.add_command(errors)

# Maintenance commands
cli.add_command(cleanup)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
]
