"""Standalone sync worker — runs the scheduler until SIGINT/SIGTERM."""

import asyncio
import logging
import signal
import sys

import httpx

from qbo_sync.config import configure_logging, settings
from qbo_sync.database import async_session, engine, init_db
from qbo_sync.errors import ConfigError
from qbo_sync.quickbooks.client import QuickBooksClient
from qbo_sync.repositories.token_store import TokenStore
from qbo_sync.services.scheduler import SyncScheduler

logger = logging.getLogger("qbo-sync.worker")


async def display_startup_info(tokens: TokenStore):
    logger.info("=" * 60)
    logger.info("QuickBooks Sync Service")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.qb_environment}")
    logger.info(f"Sync interval: Every {settings.sync_interval_minutes} minutes")
    logger.info(f"Database: {settings.database_url.split('@')[-1]}")

    realm_id = await tokens.get_active_realm_id()
    if realm_id:
        logger.info(f"Authorized for realm: {realm_id}")
        logger.info("Sync service will start automatically")
    else:
        logger.warning("Not authorized yet")
        logger.info("To authorize:")
        logger.info("  1. Visit: https://developer.intuit.com/app/developer/playground")
        logger.info("  2. Get authorization code and realm ID")
        logger.info("  3. Add to .env: QB_AUTHORIZATION_CODE and QB_REALM_ID")
        logger.info("  4. Run: qbo-sync-bootstrap")
        logger.info("Sync service will wait for authorization...")
    logger.info("=" * 60)


async def run_worker():
    await init_db(engine)
    logger.info("Database initialized")

    tokens = TokenStore(async_session)
    await display_startup_info(tokens)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops; Ctrl+C still raises KeyboardInterrupt
            pass

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http_client:
        client = QuickBooksClient(http_client, tokens, settings=settings)
        scheduler = SyncScheduler(async_session, client, settings=settings)

        logger.info("Running initial sync...")
        task = scheduler.start()
        logger.info("Sync worker is running")
        logger.info("Press Ctrl+C to stop")

        stop_waiter = asyncio.create_task(stop.wait())
        await asyncio.wait({task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
        stop_waiter.cancel()

        logger.info("Shutting down Sync Service...")
        finished = await scheduler.stop(settings.shutdown_timeout_seconds)
        if not finished:
            logger.warning("In-flight sync was cancelled; it will be retried on next start")

    await engine.dispose()
    logger.info("Shutdown complete")


def main():
    configure_logging()

    try:
        settings.validate_required()
        logger.info("Configuration validated successfully")
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Fatal error in sync worker: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
