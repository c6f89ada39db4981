"""Scheduled publishing job"""
from typing import Dict

from sqlalchemy.orm import Session

from app.services.social.orchestrator import run_publish_pass
from app.tasks.runner import scheduled_job


@scheduled_job("publish_due_content")
def publish_due_content_job(db: Session, cancel_event=None) -> Dict[str, int]:
    """Retry failed items, then publish due content"""
    return run_publish_pass(db, cancel_event=cancel_event)
