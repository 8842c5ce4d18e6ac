"""Lane commands for hotelsync CLI.

Commands:
- lanes list: List lanes with state and health
- lanes show: Show one lane in detail
- lanes reset: Reset a failed or retry-pending lane
- lanes auto-retry: Enable or disable automatic retries
"""

from __future__ import annotations

import sys

import click

from hotelsync.cli.context import CliState, format_time, open_orchestrator
from hotelsync.core.types import LaneState, MessageKind
from hotelsync.engine.errors import InvalidTransitionError, UnknownLaneError

KIND_CHOICE = click.Choice([kind.value for kind in MessageKind])
STATE_CHOICE = click.Choice([state.value for state in LaneState])


@click.group()
def lanes() -> None:
    """Inspect and control synchronization lanes."""


@lanes.command("list")
@click.option("--state", type=STATE_CHOICE, default=None, help="Only lanes in this state.")
@click.option("--property", "property_id", default=None, help="Only lanes of this property.")
@click.pass_obj
def list_lanes(cli_state: CliState, state: str | None, property_id: str | None) -> None:
    """List lanes with their state and health score."""
    states = [LaneState(state)] if state else None
    with open_orchestrator(cli_state) as orchestrator:
        snapshots = orchestrator.list_snapshots(states, property_id)

    if not snapshots:
        click.echo("No lanes.")
        return

    click.echo(f"{'PROPERTY':<12} {'KIND':<13} {'STATE':<14} {'RETRIES':<8} {'HEALTH':>6}  NEXT RETRY")
    for lane in snapshots:
        click.echo(
            f"{lane.property_id:<12} {lane.kind.value:<13} {lane.state.value:<14} "
            f"{lane.retry_count}/{lane.max_retries:<6} {lane.health_score:>6.1f}  "
            f"{format_time(lane.next_retry_at)}"
        )


@lanes.command("show")
@click.argument("property_id")
@click.argument("kind", type=KIND_CHOICE)
@click.pass_obj
def show_lane(cli_state: CliState, property_id: str, kind: str) -> None:
    """Show one lane in detail."""
    with open_orchestrator(cli_state) as orchestrator:
        lane = orchestrator.lane_snapshot(property_id, MessageKind(kind))

    if lane is None:
        click.echo(f"Error: Lane not found: {property_id}/{kind}", err=True)
        sys.exit(1)

    click.echo(f"Lane:                 {lane.property_id}/{lane.kind.value}")
    click.echo(f"State:                {lane.state.value}")
    click.echo(f"Health score:         {lane.health_score:.1f}")
    click.echo(f"Success rate:         {lane.success_rate:.1f}%")
    click.echo(f"Records:              {lane.records_processed}/{lane.records_total}")
    click.echo(f"Retries:              {lane.retry_count}/{lane.max_retries}")
    click.echo(f"Consecutive failures: {lane.consecutive_failures}")
    click.echo(f"Auto-retry:           {'enabled' if lane.auto_retry_enabled else 'disabled'}")
    click.echo(f"Last attempt:         {format_time(lane.last_attempt_at)}")
    click.echo(f"Last success:         {format_time(lane.last_success_at)}")
    click.echo(f"Next retry:           {format_time(lane.next_retry_at)}")
    if lane.error_message:
        click.echo(f"Last error:           {lane.error_message}")


@lanes.command("reset")
@click.argument("property_id")
@click.argument("kind", type=KIND_CHOICE)
@click.pass_obj
def reset_lane(cli_state: CliState, property_id: str, kind: str) -> None:
    """Reset a failed or retry-pending lane so it can dispatch again."""
    with open_orchestrator(cli_state) as orchestrator:
        try:
            lane = orchestrator.reset_lane(property_id, MessageKind(kind))
        except (UnknownLaneError, InvalidTransitionError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    click.echo(f"Lane {lane.property_id}/{lane.kind.value} reset to {lane.state.value}.")


@lanes.command("auto-retry")
@click.argument("property_id")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("setting", type=click.Choice(["on", "off"]))
@click.pass_obj
def auto_retry(cli_state: CliState, property_id: str, kind: str, setting: str) -> None:
    """Enable (on) or disable (off) automatic retries for a lane."""
    with open_orchestrator(cli_state) as orchestrator:
        try:
            lane = orchestrator.set_auto_retry(property_id, MessageKind(kind), setting == "on")
        except (UnknownLaneError, InvalidTransitionError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    click.echo(
        f"Auto-retry {'enabled' if lane.auto_retry_enabled else 'disabled'} "
        f"for {lane.property_id}/{lane.kind.value} (state: {lane.state.value})."
    )
