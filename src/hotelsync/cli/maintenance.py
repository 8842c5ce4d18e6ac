"""Maintenance commands for hotelsync CLI.

Commands:
- cleanup: Delete old messages, resolved errors and expired dedup entries
"""

from __future__ import annotations

import click

from hotelsync.cli.context import CliState, open_orchestrator


@click.command()
@click.option(
    "--older-than-days",
    "-d",
    type=int,
    default=None,
    help="Delete rows older than N days (default: retention_days from config).",
)
@click.pass_obj
def cleanup(cli_state: CliState, older_than_days: int | None) -> None:
    """Delete old message history.

    Removes processed and failed messages, resolved errors and expired
    deduplication entries older than the retention period. Messages still
    referenced by an unresolved error are kept.

    This command can be run manually or via cron for scheduled cleanup.

    Examples:

        # Clean up using the configured retention (30 days)
        hotelsync cleanup

        # Remove everything older than 7 days
        hotelsync cleanup --older-than-days 7
    """
    with open_orchestrator(cli_state) as orchestrator:
        days = older_than_days if older_than_days is not None else orchestrator.config.retention_days
        click.echo(f"Removing history older than {days} days...")
        counts = orchestrator.store.cleanup(days, now=orchestrator.now())

    if any(counts.values()):
        click.echo(
            f"Deleted {counts.get('messages', 0)} messages, {counts.get('errors', 0)} errors, "
            f"{counts.get('dedup_entries', 0)} dedup entries."
        )
    else:
        click.echo("Nothing to clean up.")
