"""Background task scheduler: expires drafts that missed their deadline.

Uses FastAPI's lifespan context to start/stop an asyncio background loop.
No external dependencies, just an asyncio.sleep loop that sweeps every
``draft_expiry_interval_seconds``.

Usage:
    from draftflow.services.scheduler import lifespan
    app = FastAPI(lifespan=lifespan, ...)

Configuration:
    DRAFT_EXPIRY_INTERVAL_SECONDS=3600   (via .env)
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from draftflow.config import settings
from draftflow.database import async_session, create_tables
from draftflow.schemas.report import ExpirySummary
from draftflow.services.reports import expire_drafts

logger = logging.getLogger("draftflow.scheduler")


async def run_expiry_sweep() -> ExpirySummary:
    """One sweep in its own transaction."""
    async with async_session() as db:
        try:
            summary = await expire_drafts(db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    logger.info("Expiry sweep done: %d draft(s) expired", summary.expired)
    return summary


async def _scheduler_loop(interval: float) -> None:
    while True:
        try:
            await run_expiry_sweep()
        except Exception:
            logger.exception("Unhandled error in draft expiry sweep")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: create tables, start the sweep, cancel on shutdown."""
    await create_tables()
    task = asyncio.create_task(_scheduler_loop(settings.draft_expiry_interval_seconds))
    logger.info("Draft expiry scheduler started")
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Draft expiry scheduler stopped")
