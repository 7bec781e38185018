"""
APScheduler Background Jobs

Periodic health probe feeding the connectivity signal. Runs on an
AsyncIOScheduler so probes and the drains they trigger share one event loop.
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from offline_queue.config import settings
from offline_queue.services.connectivity import HealthCheckPoller

logger = structlog.get_logger(__name__)


async def run_health_probe(poller: HealthCheckPoller) -> None:
    """
    Wrapper for the scheduled health probe.

    A crashing probe is logged and the next interval tries again.
    """
    try:
        status = await poller.poll()
        logger.debug("health_probe_completed", connected=status.connected, status=status.status)
    except Exception as e:
        logger.error("health_probe_crashed", error=str(e), exc_info=True)


def start_health_poller(
    poller: HealthCheckPoller,
    interval_seconds: Optional[int] = None,
    environment: Optional[str] = None
) -> AsyncIOScheduler:
    """
    Start the health probe scheduler.

    Must be called while an asyncio event loop is running.

    Args:
        poller: Poller wired to the connectivity signal
        interval_seconds: Defaults to settings.health_check_interval_seconds
        environment: Current environment (skip scheduler in testing)

    Returns:
        AsyncIOScheduler instance
    """
    scheduler = AsyncIOScheduler()
    environment = environment or settings.environment

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    interval = interval_seconds or settings.health_check_interval_seconds
    scheduler.add_job(
        run_health_probe,
        trigger=IntervalTrigger(seconds=interval),
        args=[poller],
        id="health_probe",
        name="Backend Health Probe",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("job_registered", job="health_probe", interval_seconds=interval)

    scheduler.start()
    logger.info("scheduler_started", jobs=["health_probe"])

    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler):
    """
    Stop the scheduler gracefully.

    Args:
        scheduler: AsyncIOScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_health_poller",
    "stop_scheduler",
    "run_health_probe",
]
