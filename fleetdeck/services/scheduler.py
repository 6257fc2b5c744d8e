from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session
import logging
from fleetdeck.core.config import get_settings
from fleetdeck.core.database import engine
from fleetdeck.core.security import SYSTEM_ACTOR
from fleetdeck.utils.time import utcnow

settings = get_settings()
logger = logging.getLogger(__name__)

EXPIRE_JOB_ID = "expire_due_apps"
REFRESH_JOB_ID = "refresh_all_hosts"

jobstores = {
    'default': SQLAlchemyJobStore(url=settings.DATABASE_URL)
}

scheduler = AsyncIOScheduler(jobstores=jobstores)


async def expire_due_apps() -> int:
    """Stops every running app whose auto-stop instant has passed.

    Returns:
        Number of apps stopped in this sweep.
    """
    from fleetdeck.services.lifecycle import LifecycleService
    with Session(engine) as session:
        stopped = await LifecycleService(session).stop_expired(utcnow(), actor=SYSTEM_ACTOR)
    if stopped:
        logger.info(f"Scheduler: auto-stopped {len(stopped)} app(s): {', '.join(a.name for a in stopped)}")
    return len(stopped)


async def refresh_all_hosts() -> None:
    """Keeps host status and running app counts current without user-initiated refreshes."""
    from fleetdeck.services.inventory import InventoryService
    logger.info("Scheduler: Running periodic host status refresh")
    with Session(engine) as session:
        await InventoryService(session).refresh_all(actor=SYSTEM_ACTOR)


class SchedulerService:
    """Background driver for the auto-stop sweep and host refresh.

    Only decides *when* those run; what they do lives in LifecycleService
    and InventoryService.
    """
    @staticmethod
    def start():
        if not settings.SCHEDULER_ENABLED:
            logger.info("Scheduler disabled by configuration.")
            return
        if not scheduler.running:
            scheduler.start()
            scheduler.add_job(
                expire_due_apps,
                IntervalTrigger(seconds=settings.AUTO_STOP_INTERVAL_SECONDS),
                id=EXPIRE_JOB_ID,
                name="Auto-stop expired apps",
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            scheduler.add_job(
                refresh_all_hosts,
                IntervalTrigger(minutes=settings.HOST_REFRESH_INTERVAL_MINUTES),
                id=REFRESH_JOB_ID,
                name="Refresh host status",
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            logger.info("Scheduler started with auto-stop sweep and periodic health checks.")

    @staticmethod
    def shutdown():
        if scheduler.running:
            scheduler.shutdown()

