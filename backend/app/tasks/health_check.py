"""Channel health check and notification housekeeping jobs"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.helpers import get_api_key_credentials, get_oauth_credentials, update_connection_health
from app.models.enums import AuthMethod, ConnectionStatus, HealthStatus
from app.models.social_connection import SocialConnection
from app.services.notification_service import (
    cleanup_expired_notifications, create_health_check_failed_alert, dismiss_connection_alerts
)
from app.services.social.registry import ProviderRegistry, get_provider_registry
from app.tasks.runner import scheduled_job
from app.utils.encryption import CredentialVault, get_vault

logger = logging.getLogger("scheduler")


def connections_due_for_check(db: Session, min_interval_minutes: Optional[int] = None):
    """Enabled, connected channels not checked within the interval (OAuth and API-key alike)"""
    interval = min_interval_minutes if min_interval_minutes is not None else settings.HEALTH_CHECK_MIN_INTERVAL_MINUTES
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=interval)
    return db.query(SocialConnection).filter(
        SocialConnection.is_enabled.is_(True),
        SocialConnection.connection_status == ConnectionStatus.CONNECTED.value,
        or_(SocialConnection.last_health_check.is_(None), SocialConnection.last_health_check < cutoff),
    ).order_by(SocialConnection.id).all()


def check_connection_health(
    connection: SocialConnection,
    db: Session,
    registry: ProviderRegistry,
    vault: CredentialVault,
) -> bool:
    """Probe one channel with a profile lookup; True when it answered"""
    try:
        if connection.auth_method == AuthMethod.API_KEY.value:
            credentials = get_api_key_credentials(connection, vault)
        else:
            credentials = get_oauth_credentials(connection, vault)
        user_info = registry.get(connection.network).fetch_channel_profile(credentials)
        message = None if user_info is not None else f"{connection.network} did not return the channel profile"
    except Exception as e:
        db.rollback()
        logger.warning(f"Health check of connection {connection.id} raised: {type(e).__name__}: {e}")
        message = f"Health check failed: {e}"

    if message is None:
        update_connection_health(connection, HealthStatus.OK, db)
        dismiss_connection_alerts(connection.id, db)
        return True

    update_connection_health(connection, HealthStatus.KO, db, error_message=message)
    create_health_check_failed_alert(connection, message, db)
    return False


def run_health_checks(
    db: Session,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, int]:
    registry = registry or get_provider_registry()
    vault = vault or get_vault()
    summary = {"checked": 0, "healthy": 0, "unhealthy": 0}

    for connection in connections_due_for_check(db):
        if cancel_event is not None and cancel_event.is_set():
            break
        healthy = check_connection_health(connection, db, registry, vault)
        summary["checked"] += 1
        summary["healthy" if healthy else "unhealthy"] += 1

    return summary


@scheduled_job("channel_health_check")
def channel_health_check_job(db: Session, cancel_event=None) -> Dict[str, int]:
    return run_health_checks(db, cancel_event=cancel_event)


@scheduled_job("cleanup_notifications")
def cleanup_notifications_job(db: Session, cancel_event=None) -> int:
    return cleanup_expired_notifications(db)
