"""Error record commands for hotelsync CLI.

Commands:
- errors list: List error records
- errors resolve: Mark an error record resolved
"""

from __future__ import annotations

import sys

import click

from hotelsync.cli.context import CliState, format_time, open_orchestrator
from hotelsync.core.types import MessageKind
from hotelsync.engine.errors import MessageStateError, UnknownErrorRecordError


@click.group()
def errors() -> None:
    """Inspect and resolve classified failures."""


@errors.command("list")
@click.option("--unresolved", is_flag=True, help="Only errors not yet resolved.")
@click.option("--property", "property_id", default=None, help="Only errors of this property.")
@click.option(
    "--kind",
    type=click.Choice([kind.value for kind in MessageKind]),
    default=None,
    help="Only errors of this message kind.",
)
@click.option("--limit", type=int, default=50, show_default=True, help="Maximum rows.")
@click.pass_obj
def list_errors(
    cli_state: CliState,
    unresolved: bool,
    property_id: str | None,
    kind: str | None,
    limit: int,
) -> None:
    """List error records, newest first."""
    with open_orchestrator(cli_state) as orchestrator:
        records = orchestrator.store.list_errors(
            unresolved_only=unresolved,
            property_id=property_id,
            kind=MessageKind(kind) if kind else None,
            limit=limit,
        )

    if not records:
        click.echo("No errors.")
        return

    for record in records:
        flags = []
        if record.requires_manual_intervention:
            flags.append("MANUAL")
        if record.is_resolved:
            flags.append("resolved")
        click.echo(
            f"#{record.id} {format_time(record.created_at)} {record.property_id}/{record.kind.value} "
            f"{record.error_kind.value} ({record.severity.value}) {' '.join(flags)}".rstrip()
        )
        click.echo(f"    {record.message}")


@errors.command("resolve")
@click.argument("error_id", type=int)
@click.option("--notes", "-n", default=None, help="Resolution notes.")
@click.pass_obj
def resolve_error(cli_state: CliState, error_id: int, notes: str | None) -> None:
    """Mark an error record resolved."""
    with open_orchestrator(cli_state) as orchestrator:
        try:
            record = orchestrator.resolve_error(error_id, notes)
        except (UnknownErrorRecordError, MessageStateError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    click.echo(f"Error #{record.id} resolved.")
