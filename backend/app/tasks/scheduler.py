"""In-process scheduler: runs each job on its interval in a worker thread"""
import asyncio
import logging
import threading
from typing import Callable, List

from app.core.config import settings
from app.tasks.health_check import channel_health_check_job, cleanup_notifications_job
from app.tasks.publish_tasks import publish_due_content_job
from app.tasks.token_tasks import cleanup_expired_states_job, refresh_expiring_tokens_job

logger = logging.getLogger("scheduler")

# Set on shutdown; long-running jobs check it between items
shutdown_event = threading.Event()


def scheduled_jobs():
    """(job, interval in seconds) for every periodic job"""
    return [
        (refresh_expiring_tokens_job, settings.TOKEN_REFRESH_INTERVAL_MINUTES * 60),
        (cleanup_expired_states_job, settings.STATE_CLEANUP_INTERVAL_MINUTES * 60),
        (publish_due_content_job, settings.PUBLISH_INTERVAL_MINUTES * 60),
        (channel_health_check_job, settings.HEALTH_CHECK_INTERVAL_MINUTES * 60),
        (cleanup_notifications_job, settings.NOTIFICATION_CLEANUP_INTERVAL_MINUTES * 60),
    ]


async def run_periodically(job: Callable, interval_seconds: float, initial_delay: float = 0):
    """Run a job forever; a failed run is logged and the loop keeps going"""
    name = getattr(job, "job_name", job.__name__)
    if initial_delay:
        await asyncio.sleep(initial_delay)
    while not shutdown_event.is_set():
        try:
            await asyncio.to_thread(job, cancel_event=shutdown_event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Already logged and counted by the job wrapper
            logger.warning(f"Scheduled run of {name} failed, next run in {interval_seconds:.0f}s: {e}")
        await asyncio.sleep(interval_seconds)


def start_scheduler() -> List[asyncio.Task]:
    shutdown_event.clear()
    tasks = []
    for index, (job, interval) in enumerate(scheduled_jobs()):
        # Stagger start-up so jobs do not all hit the database at once
        tasks.append(asyncio.create_task(run_periodically(job, interval, initial_delay=5 * (index + 1))))
        logger.info(f"Scheduled {job.job_name} every {interval // 60} minute(s)")
    return tasks


async def stop_scheduler(tasks: List[asyncio.Task]) -> None:
    shutdown_event.set()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Scheduler stopped")
