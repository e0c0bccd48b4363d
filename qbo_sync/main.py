"""QuickBooks Sync — FastAPI application.

Runs the sync scheduler in the background and exposes status, history,
manual run/reset, and the synced entities over HTTP.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from qbo_sync.api import entities, sync
from qbo_sync.config import configure_logging, settings
from qbo_sync.database import async_session, engine, init_db
from qbo_sync.quickbooks.client import QuickBooksClient
from qbo_sync.repositories.token_store import TokenStore
from qbo_sync.services.scheduler import SyncScheduler

configure_logging()
logger = logging.getLogger("qbo-sync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    # Startup
    logger.info("=" * 60)
    logger.info("QuickBooks Sync API starting up")
    logger.info(f"Environment: {settings.qb_environment}")
    logger.info(f"Database: {settings.database_url.split('@')[-1]}")
    logger.info(f"Sync interval: {settings.sync_interval_minutes} min")
    logger.info("=" * 60)

    await init_db(engine)
    logger.info("Database initialized")

    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    client = QuickBooksClient(http_client, TokenStore(async_session), settings=settings)
    scheduler = SyncScheduler(async_session, client, settings=settings)

    app.state.session_factory = async_session
    app.state.scheduler = scheduler

    scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await scheduler.stop(settings.shutdown_timeout_seconds)
    await http_client.aclose()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="QuickBooks Sync",
    description="Incremental QuickBooks Online replication",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(sync.router)
app.include_router(entities.router)


@app.get("/")
async def root():
    """Root endpoint — basic info."""
    return {
        "app": "QuickBooks Sync",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "healthy",
        "scheduler_running": bool(scheduler and scheduler.is_running),
        "cycle_running": bool(scheduler and scheduler.cycle_running),
    }
