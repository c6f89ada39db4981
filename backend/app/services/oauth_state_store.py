"""OAuth state store: anti-CSRF state and PKCE verifiers for interactive authorization"""
import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import mask_state
from app.models.oauth_state import OAuthState

logger = logging.getLogger("oauth")

STATE_BYTES = 32
CODE_VERIFIER_BYTES = 32


def _random_urlsafe(num_bytes: int) -> str:
    """Random bytes as base64url without padding"""
    return base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """PKCE code verifier: 43 chars from the RFC 7636 unreserved set"""
    return _random_urlsafe(CODE_VERIFIER_BYTES)


def generate_code_challenge(code_verifier: str) -> str:
    """S256 code challenge: BASE64URL(SHA256(ASCII(code_verifier))) without padding"""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def create_state(
    account_id: int,
    user_id: int,
    network: str,
    redirect_uri: str,
    db: Session,
    return_url: Optional[str] = None,
    scopes: Optional[str] = None,
    use_pkce: bool = False,
) -> OAuthState:
    """Persist a new authorization attempt and return it

    A PKCE verifier is generated per attempt and never reused.
    """
    now = datetime.now(timezone.utc)
    record = OAuthState(
        state=_random_urlsafe(STATE_BYTES),
        account_id=account_id,
        user_id=user_id,
        network=network,
        redirect_uri=redirect_uri,
        return_url=return_url,
        code_verifier=generate_code_verifier() if use_pkce else None,
        requested_scopes=scopes,
        created_at=now,
        expires_at=now + timedelta(minutes=settings.OAUTH_STATE_TTL_MINUTES),
        is_consumed=False,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(
        f"Created OAuth state {mask_state(record.state)} for account {account_id}, "
        f"network {network}, pkce={use_pkce}"
    )
    return record


def get_by_state(state: str, db: Session) -> Optional[OAuthState]:
    """Read-only lookup; does not consume"""
    if not state:
        return None
    return db.query(OAuthState).filter(OAuthState.state == state).first()


def validate_and_consume(state: str, db: Session) -> Optional[OAuthState]:
    """Consume a state exactly once

    The consume is a single conditional UPDATE, so when a callback is delivered
    twice concurrently only one caller sees rowcount == 1.

    Returns:
        The consumed record, or None if it is unknown, already consumed or expired
    """
    if not state:
        return None

    now = datetime.now(timezone.utc)
    result = db.execute(
        update(OAuthState)
        .where(
            OAuthState.state == state,
            OAuthState.is_consumed.is_(False),
            OAuthState.expires_at > now,
        )
        .values(is_consumed=True, consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if result.rowcount != 1:
        record = get_by_state(state, db)
        if record is None:
            logger.warning(f"OAuth state {mask_state(state)} not found")
        elif record.is_consumed:
            logger.warning(f"OAuth state {mask_state(state)} already consumed")
        else:
            logger.warning(f"OAuth state {mask_state(state)} expired")
        return None

    record = get_by_state(state, db)
    if record is not None:
        # The bulk UPDATE bypassed the identity map
        db.refresh(record)
    logger.info(f"Consumed OAuth state {mask_state(state)} for network {record.network if record else '?'}")
    return record


def cleanup_expired_states(db: Session) -> int:
    """Delete every state that is expired or already consumed"""
    now = datetime.now(timezone.utc)
    deleted = db.query(OAuthState).filter(
        or_(OAuthState.expires_at < now, OAuthState.is_consumed.is_(True))
    ).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"Cleaned up {deleted} expired or consumed OAuth state(s)")
    return deleted
