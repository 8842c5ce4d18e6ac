"""Shared helpers for hotelsync CLI commands.

Every command opens the database named by --db-path, the config file or
HOTELSYNC_DB_PATH, and wires an orchestrator over it.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import click

from hotelsync.core.config import ConfigurationError, EngineConfig, load_config
from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.server.app import build_orchestrator
from hotelsync.server.database import Database


@dataclass
class CliState:
    """Options given to the top-level command group."""

    config_path: Path | None = None
    db_path: Path | None = None

    def load(self) -> EngineConfig:
        try:
            config = load_config(self.config_path)
        except ConfigurationError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        if self.db_path is not None:
            config.db_path = self.db_path
        return config


@contextmanager
def open_orchestrator(state: CliState) -> Iterator[SyncOrchestrator]:
    """Open the configured database and yield an orchestrator over it."""
    config = state.load()
    if not config.db_path.exists():
        click.echo(f"Error: Database not found: {config.db_path}", err=True)
        click.echo("Make sure the engine has been run at least once.", err=True)
        sys.exit(1)

    db = Database(config.db_path)
    try:
        yield build_orchestrator(config, db)
    finally:
        db.close()


def format_time(value: datetime | None) -> str:
    return value.isoformat(timespec="seconds") if value is not None else "-"
