"""Notification service - user-facing alerts about channel connections"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.account import Account
from app.models.enums import NotificationType
from app.models.notification import Notification
from app.models.social_connection import SocialConnection

logger = logging.getLogger("notifications")

HEALTH_ALERT_DEDUPE_WINDOW = timedelta(hours=1)
HEALTH_ALERT_LIFETIME = timedelta(days=7)


def _owner_id(connection: SocialConnection, db: Session) -> Optional[int]:
    account = connection.account or db.query(Account).filter(Account.id == connection.account_id).first()
    return account.user_id if account else None


def _network_label(network: str) -> str:
    return "X" if network == "x" else network.capitalize()


def _active_alert(connection_id: int, notification_type: NotificationType, db: Session,
                  since: Optional[datetime] = None) -> Optional[Notification]:
    query = db.query(Notification).filter(
        Notification.connection_id == connection_id,
        Notification.type == notification_type.value,
        Notification.is_dismissed.is_(False),
    )
    if since is not None:
        query = query.filter(Notification.created_at >= since)
    return query.first()


def create_reauth_alert(connection: SocialConnection, db: Session, reason: Optional[str] = None) -> Optional[Notification]:
    """Tell the account owner a channel must be reconnected

    At most one undismissed reauth alert exists per connection.
    """
    existing = _active_alert(connection.id, NotificationType.REAUTH_REQUIRED, db)
    if existing is not None:
        logger.debug(f"Reauth alert already pending for connection {connection.id}")
        return existing

    user_id = _owner_id(connection, db)
    if user_id is None:
        logger.warning(f"Cannot raise reauth alert: connection {connection.id} has no owning user")
        return None

    label = _network_label(connection.network)
    notification = Notification(
        user_id=user_id,
        account_id=connection.account_id,
        connection_id=connection.id,
        type=NotificationType.REAUTH_REQUIRED.value,
        title=f"Reconnection required: {label}",
        message=(
            f"Your {label} connection has expired or was revoked and must be authorized again."
            + (f" Reason: {reason}" if reason else "")
        ),
        action_url=f"/social-channels?reconnect={connection.id}",
    )
    db.add(notification)
    db.commit()
    logger.info(f"Raised reauth alert for connection {connection.id} ({connection.network})")
    return notification


def create_health_check_failed_alert(connection: SocialConnection, message: str, db: Session) -> Optional[Notification]:
    """Alert about a failed health check, deduplicated within one hour"""
    now = datetime.now(timezone.utc)
    if _active_alert(connection.id, NotificationType.HEALTH_CHECK_FAILED, db, since=now - HEALTH_ALERT_DEDUPE_WINDOW):
        return None

    user_id = _owner_id(connection, db)
    if user_id is None:
        return None

    label = _network_label(connection.network)
    notification = Notification(
        user_id=user_id,
        account_id=connection.account_id,
        connection_id=connection.id,
        type=NotificationType.HEALTH_CHECK_FAILED.value,
        title=f"Connection problem: {label}",
        message=message,
        action_url=f"/social-channels?reconnect={connection.id}",
        expires_at=now + HEALTH_ALERT_LIFETIME,
    )
    db.add(notification)
    db.commit()
    return notification


def create_publish_failed_alert(item, message: str, db: Session) -> Optional[Notification]:
    """Alert the owner that an item gave up after its last allowed attempt"""
    content = item.content
    account = content.account or db.query(Account).filter(Account.id == content.account_id).first()
    if account is None:
        return None

    label = _network_label(item.network)
    notification = Notification(
        user_id=account.user_id,
        account_id=account.id,
        type=NotificationType.PUBLISH_FAILED.value,
        title=f"Publishing failed: {label}",
        message=f"\"{content.title or 'Untitled'}\" could not be published after {item.retry_count} attempts: {message}",
        action_url=f"/content/{content.id}",
    )
    db.add(notification)
    db.commit()
    logger.info(f"Raised publish failure alert for item {item.id} ({item.network})")
    return notification


def dismiss_connection_alerts(connection_id: int, db: Session) -> int:
    """Dismiss every open alert about a connection that recovered"""
    count = db.query(Notification).filter(
        Notification.connection_id == connection_id,
        Notification.is_dismissed.is_(False),
    ).update({Notification.is_dismissed: True}, synchronize_session=False)
    db.commit()
    return count


def cleanup_expired_notifications(db: Session, retention_days: Optional[int] = None) -> int:
    """Remove expired alerts and read/dismissed alerts older than the retention period"""
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days or settings.NOTIFICATION_RETENTION_DAYS)
    deleted = db.query(Notification).filter(
        or_(
            and_(Notification.expires_at.isnot(None), Notification.expires_at < now),
            and_(
                Notification.created_at < cutoff,
                or_(Notification.is_read.is_(True), Notification.is_dismissed.is_(True)),
            ),
        )
    ).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"Removed {deleted} expired notification(s)")
    return deleted
