# illusongs/services/scheduler.py
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from illusongs.services.generation_runner import process_next_job
from illusongs.services.illustrations import storage_from_settings
from illusongs.services.providers import build_provider_from_settings
from illusongs.settings.config import settings

scheduler: Optional[AsyncIOScheduler] = None
logger = logging.getLogger(__name__)


def start_scheduler():
    global scheduler
    if scheduler:
        return
    seconds = settings.GENERATION_DISPATCH_SECONDS
    if seconds <= 0:
        logger.info("Generation dispatcher disabled (set GENERATION_DISPATCH_SECONDS to enable)")
        return
    scheduler = AsyncIOScheduler()
    # one tick handles at most one job; overlapping ticks are coalesced
    scheduler.add_job(
        job_dispatch_generation,
        IntervalTrigger(seconds=seconds),
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Generation dispatcher started every %ss", seconds)


def stop_scheduler():
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None


async def job_dispatch_generation():
    try:
        provider = build_provider_from_settings()
        result = await process_next_job(provider, storage_from_settings())
    except Exception:
        # the job row already carries the error; keep the scheduler alive
        logger.exception("Scheduled generation dispatch failed")
        return
    if result:
        logger.info("Scheduled dispatch generated verse %s of song %s", result.verse_sequence, result.song_id)
