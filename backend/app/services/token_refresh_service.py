"""Token refresh service

Keeps OAuth connections alive and decides, per provider error, whether a
failure is transient (health KO, retried on the next pass) or needs the user
to authorize again (connection parked in NeedsReauth with an alert).
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import reauth_required_counter, token_refresh_counter
from app.db.helpers import (
    as_utc, get_connection, get_oauth_credentials, mark_connection_needs_reauth,
    set_connection_status, update_connection_health, update_tokens
)
from app.db.redis import claim_lease, release_lease
from app.models.enums import AuthMethod, ConnectionStatus, HealthStatus
from app.models.social_connection import SocialConnection
from app.schemas.oauth import RefreshOutcome
from app.services.notification_service import create_reauth_alert
from app.services.social.registry import ProviderRegistry, get_provider_registry
from app.utils.encryption import CredentialVault, get_vault

logger = logging.getLogger("token_refresh")

# Provider error codes meaning the stored grant is permanently unusable.
# 190 is the Graph API "invalid OAuth access token" code; 463 (expired) and
# 467 (invalidated) are its session subcodes.
REAUTH_REQUIRED_ERRORS = frozenset({
    "invalid_grant",
    "token_expired",
    "token_revoked",
    "access_denied",
    "invalid_token",
    "190",
    "463",
    "467",
})

OUTCOME_REFRESHED = "refreshed"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_NOT_APPLICABLE = "not_applicable"
OUTCOME_NEEDS_REAUTH = "needs_reauth"
OUTCOME_FAILED = "failed"
OUTCOME_ERROR = "error"
OUTCOME_LOCKED = "locked"


def is_reauth_required_error(error_code: Optional[str]) -> bool:
    """True when a provider error code means the user must authorize again"""
    if not error_code:
        return False
    return str(error_code).strip().lower() in REAUTH_REQUIRED_ERRORS


def mark_needs_reauth(connection: SocialConnection, error_code: str, message: Optional[str], db: Session) -> None:
    """Move a connection to NeedsReauth and raise an alert

    The alert is best-effort: failing to create it never undoes the transition.
    """
    mark_connection_needs_reauth(connection, error_code, message, db)
    reauth_required_counter.labels(network=connection.network).inc()
    logger.warning(
        f"Connection {connection.id} ({connection.network}) needs reauthorization: {error_code} - {message}"
    )
    try:
        create_reauth_alert(connection, db, reason=message)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create reauth alert for connection {connection.id}: {e}", exc_info=True)


def _outcome(connection_id: int, outcome: str, success: bool = False,
             error_code: Optional[str] = None, message: Optional[str] = None) -> RefreshOutcome:
    token_refresh_counter.labels(outcome=outcome).inc()
    return RefreshOutcome(
        connection_id=connection_id, outcome=outcome, success=success,
        error_code=error_code, message=message,
    )


def refresh_connection(
    connection_id: int,
    db: Session,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
) -> RefreshOutcome:
    """Refresh the tokens of a single connection"""
    registry = registry or get_provider_registry()
    vault = vault or get_vault()

    connection = get_connection(connection_id, db)
    if connection is None:
        return _outcome(connection_id, OUTCOME_NOT_FOUND, message="Connection not found")

    if not connection.is_enabled or connection.auth_method == AuthMethod.API_KEY.value:
        return _outcome(connection_id, OUTCOME_NOT_APPLICABLE,
                        message="Disabled or API-key connections are not refreshed")

    if connection.connection_status in (ConnectionStatus.NEEDS_REAUTH.value, ConnectionStatus.REVOKED.value):
        return _outcome(connection_id, OUTCOME_NEEDS_REAUTH, error_code=connection.last_oauth_error_code,
                        message="Connection requires reauthorization")

    if not claim_lease("refresh", connection_id):
        logger.info(f"Connection {connection_id} is being refreshed by another worker, skipping")
        return _outcome(connection_id, OUTCOME_LOCKED, message="Refresh already in progress")

    try:
        return _refresh_claimed(connection, db, registry, vault)
    finally:
        release_lease("refresh", connection_id)


def _refresh_claimed(
    connection: SocialConnection,
    db: Session,
    registry: ProviderRegistry,
    vault: CredentialVault,
) -> RefreshOutcome:
    network = connection.network
    now = datetime.now(timezone.utc)
    connection.last_refresh_attempt_at = now
    db.commit()

    try:
        adapter = registry.get(network)

        try:
            credentials = get_oauth_credentials(connection, vault)
        except ValueError as e:
            # Undecryptable credentials never recover on their own
            logger.error(f"Cannot decrypt credentials for connection {connection.id}: {e}")
            update_connection_health(connection, HealthStatus.KO, db, error_message="Stored credentials cannot be decrypted",
                                     error_code="decryption_failed")
            set_connection_status(connection, ConnectionStatus.ERROR, db)
            return _outcome(connection.id, OUTCOME_ERROR, error_code="decryption_failed", message=str(e))

        if adapter.refresh_uses_access_token:
            token = credentials.access_token
            expires_at = as_utc(connection.token_expires_at)
            if token and expires_at is not None and expires_at <= now:
                # An expired Graph token cannot be re-exchanged
                mark_needs_reauth(connection, "token_expired", "Access token expired before it could be extended", db)
                return _outcome(connection.id, OUTCOME_NEEDS_REAUTH, error_code="token_expired")
        else:
            token = credentials.refresh_token

        if not token:
            mark_needs_reauth(connection, "no_token", "No token available for refresh", db)
            return _outcome(connection.id, OUTCOME_NEEDS_REAUTH, error_code="no_token")

        result = adapter.refresh(token)

        if not result.success:
            message = result.error_description or result.error_code or "Token refresh failed"
            if is_reauth_required_error(result.error_code):
                mark_needs_reauth(connection, result.error_code, message, db)
                return _outcome(connection.id, OUTCOME_NEEDS_REAUTH, error_code=result.error_code, message=message)

            logger.warning(
                f"Transient refresh failure for connection {connection.id} ({network}): "
                f"{result.error_code} - {message}"
            )
            update_connection_health(connection, HealthStatus.KO, db, error_message=message,
                                     error_code=result.error_code)
            return _outcome(connection.id, OUTCOME_FAILED, error_code=result.error_code, message=message)

        update_tokens(connection, result, db, vault)
        logger.info(f"Refreshed tokens for connection {connection.id} ({network}), expires {result.expires_at}")
        return _outcome(connection.id, OUTCOME_REFRESHED, success=True)

    except Exception as e:
        db.rollback()
        logger.error(
            f"Unexpected error refreshing connection {connection.id} ({network}): {type(e).__name__}: {e}",
            exc_info=True,
            extra={"connection_id": connection.id, "network": network},
        )
        try:
            update_connection_health(connection, HealthStatus.KO, db, error_message=f"Unexpected error: {e}",
                                     error_code="unexpected_error")
        except Exception as record_err:
            db.rollback()
            logger.error(f"Failed to record refresh error for connection {connection.id}: {record_err}")
        return _outcome(connection.id, OUTCOME_ERROR, error_code="unexpected_error", message=str(e))


def find_expiring_connection_ids(db: Session, safety_window_minutes: int):
    threshold = datetime.now(timezone.utc) + timedelta(minutes=safety_window_minutes)
    rows = db.query(SocialConnection.id).filter(
        SocialConnection.is_enabled.is_(True),
        SocialConnection.auth_method == AuthMethod.OAUTH.value,
        SocialConnection.connection_status == ConnectionStatus.CONNECTED.value,
        SocialConnection.token_expires_at.isnot(None),
        SocialConnection.token_expires_at <= threshold,
    ).order_by(SocialConnection.token_expires_at).all()
    return [row[0] for row in rows]


def refresh_expiring_tokens(
    db: Session,
    safety_window_minutes: Optional[int] = None,
    registry: Optional[ProviderRegistry] = None,
    vault: Optional[CredentialVault] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Refresh every connection expiring within the safety window, one at a time

    Returns:
        Number of successful refreshes
    """
    window = safety_window_minutes if safety_window_minutes is not None else settings.TOKEN_REFRESH_SAFETY_WINDOW_MINUTES
    connection_ids = find_expiring_connection_ids(db, window)
    if not connection_ids:
        logger.debug("No connections expiring within the safety window")
        return 0

    logger.info(f"Refreshing {len(connection_ids)} connection(s) expiring within {window} minutes")
    refreshed = reauth = errors = 0

    for index, connection_id in enumerate(connection_ids):
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Token refresh cancelled after {index} of {len(connection_ids)} connection(s)")
            break
        try:
            outcome = refresh_connection(connection_id, db, registry=registry, vault=vault)
        except Exception as e:
            db.rollback()
            errors += 1
            logger.error(f"Refresh of connection {connection_id} aborted: {e}", exc_info=True)
            continue

        if outcome.success:
            refreshed += 1
        elif outcome.outcome == OUTCOME_NEEDS_REAUTH:
            reauth += 1
        elif outcome.outcome in (OUTCOME_FAILED, OUTCOME_ERROR):
            errors += 1

        if index < len(connection_ids) - 1:
            sleep(settings.TOKEN_REFRESH_DELAY_SECONDS)

    logger.info(f"Token refresh finished: {refreshed} refreshed, {reauth} need reauth, {errors} error(s)")
    return refreshed
