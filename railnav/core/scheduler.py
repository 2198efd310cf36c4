"""APScheduler setup for periodic location sampling."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(navigator, interval_seconds: int | None = None) -> AsyncIOScheduler:
    """Scheduler driving the navigator's sample -> resolve cycle."""
    from railnav.config import settings

    interval = interval_seconds or settings.location_interval_seconds
    scheduler = AsyncIOScheduler()

    # A slow fix drops the missed runs instead of queueing them
    scheduler.add_job(
        navigator.poll_location,
        "interval",
        seconds=interval,
        id="poll_location",
        name="Sample location and resolve stations",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=interval,
    )
    logger.debug("Location sampling scheduled every %ds", interval)

    return scheduler
