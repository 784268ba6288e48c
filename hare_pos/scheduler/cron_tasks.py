"""
Scheduler: periodic polling of open POS sessions and idle-session eviction.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from hare_pos.services.session_service import session_service
from hare_pos.utils.config import settings
import logging

logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()


async def poll_sessions_job():
    """Pull remote app_state changes that did not arrive over pub/sub."""
    try:
        applied = await session_service.poll_all()
        if applied:
            logger.info(f"Realtime poll applied {applied} remote document(s)")
    except Exception as e:
        logger.error(f"Realtime poll failed: {e}")


async def evict_idle_sessions_job():
    """Close sessions idle longer than SESSION_IDLE_MINUTES."""
    try:
        await session_service.evict_idle()
    except Exception as e:
        logger.error(f"Session eviction failed: {e}")


def configure_scheduler():
    """Configure all scheduled jobs. Call during startup."""
    scheduler.add_job(poll_sessions_job, IntervalTrigger(seconds=settings.REALTIME_POLL_SECONDS),
                      id="poll_sessions", name="Realtime Poll", replace_existing=True,
                      max_instances=1, coalesce=True)
    scheduler.add_job(evict_idle_sessions_job, IntervalTrigger(minutes=5),
                      id="evict_idle_sessions", name="Idle Session Eviction", replace_existing=True)
    logger.info("Scheduler configured: poll_sessions, evict_idle_sessions")


def start_scheduler():
    """Start the scheduler."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started.")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler shutdown.")
