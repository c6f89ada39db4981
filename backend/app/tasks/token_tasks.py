"""Scheduled jobs for OAuth tokens and authorization state"""
from sqlalchemy.orm import Session

from app.services.oauth_state_store import cleanup_expired_states
from app.services.token_refresh_service import refresh_expiring_tokens
from app.tasks.runner import scheduled_job


@scheduled_job("refresh_expiring_tokens")
def refresh_expiring_tokens_job(db: Session, cancel_event=None) -> int:
    """Refresh every connection whose access token expires within the safety window"""
    return refresh_expiring_tokens(db, cancel_event=cancel_event)


@scheduled_job("cleanup_expired_states")
def cleanup_expired_states_job(db: Session, cancel_event=None) -> int:
    return cleanup_expired_states(db)
