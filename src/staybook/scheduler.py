"""APScheduler setup for periodic tasks."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from staybook.config import settings
from staybook.database import get_session

logger = logging.getLogger(__name__)


def run_complete_past_bookings() -> None:
    """Job wrapper: close out stays whose check-out has passed."""
    from staybook.modules.dashboard.actions import complete_past_bookings

    session = get_session()
    try:
        complete_past_bookings(session)
    finally:
        session.close()


def create_scheduler() -> BackgroundScheduler:
    """Create and configure the background scheduler."""
    from staybook.modules.dashboard.activity import ActivityRecorder

    scheduler = BackgroundScheduler()
    sched_config = settings.get("scheduler", {})

    # Wire up event handlers
    ActivityRecorder().setup_event_handlers()

    # Mark finished stays completed (daily, early morning)
    scheduler.add_job(
        run_complete_past_bookings,
        "cron",
        hour=sched_config.get("complete_bookings_hour", 3),
        minute=0,
        id="complete_bookings",
        name="Complete Past Bookings",
    )

    logger.info("Scheduler configured with %d jobs", len(scheduler.get_jobs()))
    return scheduler
