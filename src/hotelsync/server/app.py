"""FastAPI application for the hotelsync operator API.

This module creates and configures the FastAPI application with:
- REST API for lanes, error records and message history
- Retry scheduler started and stopped with the application

Usage:
    uvicorn hotelsync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from hotelsync import __version__
from hotelsync.core.config import ConfigurationError, EngineConfig, load_config
from hotelsync.engine.dedup import DedupCache, DeduplicationLedger, MemoryDedupCache, RedisDedupCache
from hotelsync.engine.orchestrator import SyncOrchestrator
from hotelsync.engine.store import SyncStore
from hotelsync.server.api.router import router as api_router
from hotelsync.server.database import Database, SqlDedupCache
from hotelsync.server.scheduler import RetryScheduler

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_path: Path | None, level: int = logging.INFO) -> None:
    """Configure logging to output to both file and stdout.

    Calling it again replaces the handlers installed by a previous call.

    Args:
        log_path: Path to the log file (None logs to stdout only).
        level: Level of the hotelsync logger.
    """
    formatter = logging.Formatter(_LOG_FORMAT)

    root_logger = logging.getLogger("hotelsync")
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if getattr(handler, "_hotelsync", False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_path is not None:
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._hotelsync = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)

    # Also capture uvicorn logs to file
    if log_path is not None:
        for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            logging.getLogger(uvicorn_name).addHandler(handlers[-1])


def build_dedup_cache(config: EngineConfig, db: SyncStore) -> DedupCache:
    """Create the deduplication cache selected by configuration."""
    backend = config.dedup.backend
    if backend == "redis":
        if not config.dedup.redis_url:
            raise ConfigurationError("dedup.redis_url is required for the redis backend")
        return RedisDedupCache.from_url(config.dedup.redis_url, key_prefix=config.dedup.key_prefix)
    if backend == "sql":
        if not isinstance(db, Database):
            raise ConfigurationError("The sql dedup backend requires a Database store")
        return SqlDedupCache(db)
    return MemoryDedupCache()


def build_orchestrator(config: EngineConfig, db: SyncStore) -> SyncOrchestrator:
    """Wire an orchestrator over a store according to configuration."""
    ledger = DeduplicationLedger(build_dedup_cache(config, db), ttl_seconds=config.dedup.ttl_seconds)
    return SyncOrchestrator(db, ledger=ledger, config=config)


def create_app(
    db: SyncStore,
    orchestrator: SyncOrchestrator | None = None,
    scheduler: RetryScheduler | None = None,
) -> FastAPI:
    """Create FastAPI application with a custom store.

    This is primarily used for testing with isolated databases.

    Args:
        db: Store instance.
        orchestrator: Orchestrator over db (built from defaults when omitted).
        scheduler: Optional retry scheduler started with the application.

    Returns:
        Configured FastAPI application.
    """
    orchestrator = orchestrator or build_orchestrator(EngineConfig(), db)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        db_path = getattr(db, "path", "in-memory")
        logger.info("=" * 60)
        logger.info("hotelsync API Starting")
        logger.info("=" * 60)
        logger.info("  Database:  %s", db_path)
        logger.info("  Dedup:     %s", orchestrator.config.dedup.backend)
        logger.info("  Scheduler: %s", "enabled" if scheduler else "disabled")
        logger.info("=" * 60)
        if scheduler is not None:
            scheduler.start()

        yield

        if scheduler is not None:
            scheduler.stop()
        logger.info("hotelsync API shutting down")

    application = FastAPI(
        title="hotelsync",
        description="Hotel distribution synchronization engine",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.orchestrator = orchestrator
    application.state.scheduler = scheduler

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    config = load_config()
    setup_logging(config.log_path)
    db = Database(config.db_path)
    orchestrator = build_orchestrator(config, db)
    scheduler = RetryScheduler(
        orchestrator,
        poll_seconds=config.retry_poll_seconds,
        retention_days=config.retention_days,
    )
    return create_app(db, orchestrator=orchestrator, scheduler=scheduler)
