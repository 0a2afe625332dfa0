import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from studentplan.plan.models import ViewMode
from studentplan.services.plan_service import PlanService

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

REFRESH_JOB_ID = "plan_refresh"


def init_scheduler(timezone: str = "Europe/Warsaw"):
    if not scheduler.running:
        scheduler.configure(timezone=timezone)


async def _run_refresh(service: PlanService) -> None:
    try:
        days = await service.warm_up(ViewMode.WEEK)
    except Exception:
        logger.exception("Background plan refresh failed")
        return
    logger.info("Background plan refresh done (days cached=%s)", days)


def ensure_refresh_job(service: PlanService, interval_minutes: int) -> bool:
    """Register (or replace) the periodic week refresh; 0 minutes disables it."""
    if interval_minutes <= 0:
        if scheduler.get_job(REFRESH_JOB_ID) is not None:
            scheduler.remove_job(REFRESH_JOB_ID)
        logger.info("Background plan refresh disabled.")
        return False

    scheduler.add_job(
        _run_refresh,
        IntervalTrigger(minutes=interval_minutes),
        args=[service],
        id=REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    return True
