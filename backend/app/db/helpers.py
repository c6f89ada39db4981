"""Database helper functions for accounts and social connections

Every credential written here goes through the CredentialVault; plaintext
tokens only ever exist in the ChannelCredentials returned to a caller that is
about to talk to a provider.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.account import Account
from app.models.enums import AuthMethod, ConnectionStatus, HealthStatus
from app.models.social_connection import SocialConnection
from app.schemas.oauth import TokenResult, UserInfo
from app.schemas.publish import ChannelCredentials
from app.utils.encryption import CredentialVault, get_vault

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored datetime to an aware UTC datetime

    SQLite hands back naive datetimes even for timezone-aware columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ACCOUNTS
# ============================================================================

def get_account(account_id: int, db: Session) -> Optional[Account]:
    return db.query(Account).filter(Account.id == account_id).first()


def get_account_for_user(account_id: int, user_id: int, db: Session) -> Optional[Account]:
    """Get an account only if it is owned by the given user"""
    return db.query(Account).filter(
        Account.id == account_id,
        Account.user_id == user_id
    ).first()


# ============================================================================
# CONNECTIONS - READS
# ============================================================================

def get_connection(connection_id: int, db: Session) -> Optional[SocialConnection]:
    return db.query(SocialConnection).filter(SocialConnection.id == connection_id).first()


def get_connection_for(account_id: int, network: str, db: Session) -> Optional[SocialConnection]:
    """Get the connection for an (account, network) pair"""
    return db.query(SocialConnection).filter(
        SocialConnection.account_id == account_id,
        SocialConnection.network == network
    ).first()


def list_connections(account_id: int, db: Session) -> List[SocialConnection]:
    return db.query(SocialConnection).filter(
        SocialConnection.account_id == account_id
    ).order_by(SocialConnection.network).all()


# ============================================================================
# CONNECTIONS - WRITES
# ============================================================================

def save_oauth_connection(
    account_id: int,
    network: str,
    token: TokenResult,
    db: Session,
    user_info: Optional[UserInfo] = None,
    extra_data: Optional[dict] = None,
    vault: Optional[CredentialVault] = None,
) -> SocialConnection:
    """Create or update the OAuth connection after a successful code exchange

    A fresh interactive authorization is the only way a connection returns to
    Connected, so this resets status, health and error fields.
    """
    vault = vault or get_vault()
    connection = get_connection_for(account_id, network, db)
    if connection is None:
        connection = SocialConnection(account_id=account_id, network=network)
        db.add(connection)

    connection.auth_method = AuthMethod.OAUTH.value
    connection.access_token = vault.protect(token.access_token)
    if token.refresh_token:
        connection.refresh_token = vault.protect(token.refresh_token)
    connection.token_expires_at = token.expires_at
    connection.refresh_token_expires_at = token.refresh_token_expires_at
    if token.scopes:
        connection.scopes = token.scopes
    connection.connection_status = ConnectionStatus.CONNECTED.value
    connection.health_status = HealthStatus.OK.value
    connection.last_health_check = utcnow()
    connection.last_error_message = None
    connection.last_oauth_error_code = None
    connection.is_enabled = True

    if user_info is not None:
        connection.external_user_id = user_info.owner_id or user_info.id
        connection.external_channel_id = user_info.id
        connection.external_username = user_info.username or user_info.display_name
    if extra_data:
        merged = dict(connection.extra_data or {})
        merged.update(extra_data)
        connection.extra_data = merged

    db.commit()
    db.refresh(connection)
    logger.info(f"Saved {network} OAuth connection {connection.id} for account {account_id}")
    return connection


def save_api_key_connection(
    account_id: int,
    network: str,
    api_key: str,
    api_secret: str,
    access_token: str,
    access_token_secret: str,
    db: Session,
    vault: Optional[CredentialVault] = None,
) -> SocialConnection:
    """Create or update an API-key (OAuth 1.0a user context) connection"""
    vault = vault or get_vault()
    connection = get_connection_for(account_id, network, db)
    if connection is None:
        connection = SocialConnection(account_id=account_id, network=network)
        db.add(connection)

    connection.auth_method = AuthMethod.API_KEY.value
    connection.api_key = vault.protect(api_key)
    connection.api_secret = vault.protect(api_secret)
    connection.access_token = vault.protect(access_token)
    connection.access_token_secret = vault.protect(access_token_secret)
    connection.refresh_token = None
    connection.token_expires_at = None
    connection.connection_status = ConnectionStatus.CONNECTED.value
    connection.health_status = HealthStatus.OK.value
    connection.last_error_message = None
    connection.last_oauth_error_code = None
    connection.is_enabled = True

    db.commit()
    db.refresh(connection)
    logger.info(f"Saved {network} API-key connection {connection.id} for account {account_id}")
    return connection


def update_tokens(
    connection: SocialConnection,
    token: TokenResult,
    db: Session,
    vault: Optional[CredentialVault] = None,
) -> SocialConnection:
    """Persist refreshed tokens and return the connection to a healthy Connected state

    The stored refresh token is only replaced when the provider rotated it
    (YouTube never sends a new one).
    """
    vault = vault or get_vault()
    now = utcnow()
    connection.access_token = vault.protect(token.access_token)
    if token.refresh_token:
        connection.refresh_token = vault.protect(token.refresh_token)
    if token.expires_at is not None:
        connection.token_expires_at = token.expires_at
    if token.refresh_token_expires_at is not None:
        connection.refresh_token_expires_at = token.refresh_token_expires_at
    if token.scopes:
        connection.scopes = token.scopes
    connection.last_refresh_success_at = now
    connection.health_status = HealthStatus.OK.value
    connection.last_health_check = now
    connection.connection_status = ConnectionStatus.CONNECTED.value
    connection.last_error_message = None
    connection.last_oauth_error_code = None
    db.commit()
    return connection


def update_connection_health(
    connection: SocialConnection,
    status: HealthStatus,
    db: Session,
    error_message: Optional[str] = None,
    error_code: Optional[str] = None,
) -> SocialConnection:
    """Record the short-term reachability of a connection

    Health can flip back to OK on its own; connection_status is left alone.
    """
    connection.health_status = HealthStatus(status).value
    connection.last_health_check = utcnow()
    if status == HealthStatus.OK:
        connection.last_error_message = None
    else:
        connection.last_error_message = error_message
        if error_code:
            connection.last_oauth_error_code = error_code
    db.commit()
    return connection


def set_connection_status(
    connection: SocialConnection,
    status: ConnectionStatus,
    db: Session,
    error_message: Optional[str] = None,
) -> SocialConnection:
    connection.connection_status = ConnectionStatus(status).value
    if error_message:
        connection.last_error_message = error_message
    db.commit()
    return connection


def mark_connection_needs_reauth(
    connection: SocialConnection,
    error_code: str,
    error_message: Optional[str],
    db: Session,
) -> SocialConnection:
    """Park a connection until the user authorizes again"""
    connection.connection_status = ConnectionStatus.NEEDS_REAUTH.value
    connection.health_status = HealthStatus.KO.value
    connection.last_oauth_error_code = error_code
    connection.last_error_message = error_message
    connection.last_health_check = utcnow()
    db.commit()
    return connection


def set_connection_enabled(connection: SocialConnection, enabled: bool, db: Session) -> SocialConnection:
    connection.is_enabled = enabled
    db.commit()
    return connection


def delete_connection(connection: SocialConnection, db: Session) -> None:
    logger.info(f"Deleting {connection.network} connection {connection.id} for account {connection.account_id}")
    db.delete(connection)
    db.commit()


def delete_by_external_user_id(external_user_id: str, networks: Iterable[str], db: Session) -> int:
    """Delete every connection of the given networks bound to a provider user id

    Returns:
        Number of deleted connections across all networks
    """
    networks = [n.value if hasattr(n, "value") else n for n in networks]
    if not external_user_id or not networks:
        return 0
    deleted = db.query(SocialConnection).filter(
        SocialConnection.external_user_id == external_user_id,
        SocialConnection.network.in_(networks)
    ).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Deleted {deleted} connection(s) for external user across {', '.join(networks)}")
    return deleted


# ============================================================================
# CREDENTIAL RESOLUTION
# ============================================================================

def get_oauth_credentials(connection: SocialConnection, vault: Optional[CredentialVault] = None) -> ChannelCredentials:
    """Decrypt (access_token, refresh_token) for a provider call

    Raises:
        ValueError: If stored credentials cannot be decrypted
    """
    vault = vault or get_vault()
    return ChannelCredentials(
        auth_method=AuthMethod.OAUTH.value,
        access_token=vault.unprotect(connection.access_token),
        refresh_token=vault.unprotect(connection.refresh_token),
        external_user_id=connection.external_channel_id or connection.external_user_id,
        extra_data=dict(connection.extra_data or {}),
    )


def get_api_key_credentials(connection: SocialConnection, vault: Optional[CredentialVault] = None) -> ChannelCredentials:
    """Decrypt the OAuth 1.0a four-tuple (api key/secret, access token/secret)

    Raises:
        ValueError: If any part is missing or cannot be decrypted
    """
    vault = vault or get_vault()
    credentials = ChannelCredentials(
        auth_method=AuthMethod.API_KEY.value,
        api_key=vault.unprotect(connection.api_key),
        api_secret=vault.unprotect(connection.api_secret),
        access_token=vault.unprotect(connection.access_token),
        access_token_secret=vault.unprotect(connection.access_token_secret),
        external_user_id=connection.external_user_id,
        extra_data=dict(connection.extra_data or {}),
    )
    if not all([credentials.api_key, credentials.api_secret,
                credentials.access_token, credentials.access_token_secret]):
        raise ValueError(f"Incomplete API-key credentials for connection {connection.id}")
    return credentials
