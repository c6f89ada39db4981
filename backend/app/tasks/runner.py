"""Shared wrapper for scheduled jobs: own session, logging, metrics, re-raise"""
import logging
import time
from functools import wraps
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from app.core.metrics import scheduler_runs_counter
from app.db.session import SessionLocal

logger = logging.getLogger("scheduler")

T = TypeVar("T")


def scheduled_job(job_name: str):
    """Turn `work(db, **kwargs)` into a standalone job opening its own session

    Failures are logged and counted, then re-raised so the invoker (in-process
    loop, cron, container job) can decide whether to retry.
    """
    def decorator(work: Callable[..., T]) -> Callable[..., T]:
        @wraps(work)
        def job(**kwargs) -> T:
            started = time.monotonic()
            db: Session = SessionLocal()
            try:
                result = work(db, **kwargs)
            except Exception as e:
                db.rollback()
                scheduler_runs_counter.labels(job=job_name, status="failure").inc()
                logger.error(f"Job {job_name} failed after {time.monotonic() - started:.1f}s: {e}", exc_info=True)
                raise
            finally:
                db.close()
            scheduler_runs_counter.labels(job=job_name, status="success").inc()
            logger.info(f"Job {job_name} finished in {time.monotonic() - started:.1f}s: {result}")
            return result
        job.job_name = job_name
        return job
    return decorator
