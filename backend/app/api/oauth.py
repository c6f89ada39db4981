"""OAuth API routes: connect, callback, disconnect and reconnect a social channel"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import mask_state
from app.core.metrics import oauth_callbacks_counter
from app.core.security import require_auth, require_csrf_new
from app.db.helpers import (
    delete_connection, get_account, get_connection_for, get_oauth_credentials, save_oauth_connection
)
from app.db.session import get_db
from app.models.account import Account
from app.models.enums import AuthMethod, SocialNetwork
from app.schemas.oauth import TokenResult, UserInfo
from app.services.notification_service import dismiss_connection_alerts
from app.services.oauth_state_store import create_state, generate_code_challenge, validate_and_consume
from app.services.social.errors import ProviderError
from app.services.social.platforms.base import BaseProviderAdapter
from app.services.social.registry import get_provider_registry

logger = logging.getLogger("oauth")

router = APIRouter(prefix="/oauth", tags=["oauth"])

DEFAULT_RETURN_URL = "/channels"


def _bad_request(error: str, message: str, status_code: int = 400) -> HTTPException:
    return HTTPException(status_code, detail={"error": error, "message": message})


def _parse_provider(provider: str) -> SocialNetwork:
    network = SocialNetwork.parse(provider)
    if network is None:
        raise _bad_request("invalid_provider", f"Unsupported provider: {provider}")
    return network


def _owned_account(account_id: Optional[int], user_id: int, db: Session) -> Account:
    if account_id is None:
        raise _bad_request("missing_account", "accountId is required")
    account = get_account(account_id, db)
    if account is None:
        raise _bad_request("not_found", f"Account {account_id} not found", status_code=404)
    if account.user_id != user_id:
        raise _bad_request("forbidden", "You do not have access to this account", status_code=403)
    return account


def safe_return_url(return_url: Optional[str]) -> str:
    """Only same-site relative paths are allowed as post-callback destinations"""
    if not return_url or not return_url.startswith("/") or return_url.startswith("//") or "\\" in return_url:
        return DEFAULT_RETURN_URL
    return return_url


def callback_redirect_uri(network: str) -> str:
    return f"{settings.BACKEND_URL.rstrip('/')}/oauth/callback/{network}"


def frontend_redirect(return_url: Optional[str], **params) -> RedirectResponse:
    path = safe_return_url(return_url)
    query = urlencode({k: v for k, v in params.items() if v is not None})
    separator = "&" if "?" in path else "?"
    return RedirectResponse(url=f"{settings.FRONTEND_URL.rstrip('/')}{path}{separator}{query}", status_code=302)


def _connection_extra_data(
    adapter: BaseProviderAdapter,
    network: str,
    token: TokenResult,
    user_info: Optional[UserInfo],
) -> Dict[str, Any]:
    """Network-specific identifiers publishing needs later"""
    extra: Dict[str, Any] = {}
    if network == SocialNetwork.FACEBOOK.value:
        try:
            pages = adapter.list_pages(token.access_token)
        except ProviderError as e:
            logger.warning(f"Could not list Facebook pages during callback: {e}")
            pages = []
        if pages:
            extra["page_id"] = str(pages[0]["id"])
            extra["page_name"] = pages[0].get("name")
    elif network == SocialNetwork.INSTAGRAM.value and user_info is not None:
        extra["instagram_business_account_id"] = user_info.id
    elif network == SocialNetwork.LINKEDIN.value and user_info is not None:
        extra["person_urn"] = f"urn:li:person:{user_info.id}"
    return extra


@router.get("/connect/{provider}")
def connect(
    provider: str,
    account_id: Optional[int] = Query(None, alias="accountId"),
    return_url: Optional[str] = Query(None, alias="returnUrl"),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """Start the interactive authorization for one network"""
    network = _parse_provider(provider)
    account = _owned_account(account_id, user_id, db)
    adapter = get_provider_registry().get(network)

    redirect_uri = callback_redirect_uri(network.value)
    record = create_state(
        account_id=account.id,
        user_id=user_id,
        network=network.value,
        redirect_uri=redirect_uri,
        db=db,
        return_url=safe_return_url(return_url),
        scopes=adapter.default_scopes(),
        use_pkce=adapter.requires_pkce,
    )
    code_challenge = generate_code_challenge(record.code_verifier) if record.code_verifier else None
    url = adapter.build_authorize_url(record.state, redirect_uri, code_challenge=code_challenge)

    logger.info(f"Redirecting user {user_id} to {network.value} authorization (state {mask_state(record.state)})")
    return RedirectResponse(url=url, status_code=302)


@router.get("/reconnect/{provider}")
def reconnect(
    provider: str,
    account_id: Optional[int] = Query(None, alias="accountId"),
    return_url: Optional[str] = Query(None, alias="returnUrl"),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """Reconnect a channel in NeedsReauth; identical to a fresh connect"""
    return connect(provider, account_id=account_id, return_url=return_url, user_id=user_id, db=db)


@router.get("/callback/{provider}")
def callback(
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Provider redirect target: consume state, exchange the code, store the connection"""
    network = SocialNetwork.parse(provider)
    label = network.value if network else "unknown"

    if error:
        logger.warning(f"{label} authorization returned error: {error} - {error_description}")
        oauth_callbacks_counter.labels(network=label, status="provider_error").inc()
        return frontend_redirect(None, error=error, error_description=error_description or "Authorization was not granted")

    if network is None:
        oauth_callbacks_counter.labels(network=label, status="invalid_provider").inc()
        return frontend_redirect(None, error="invalid_provider", error_description=f"Unsupported provider: {provider}")

    if not code or not state:
        oauth_callbacks_counter.labels(network=label, status="missing_params").inc()
        return frontend_redirect(None, error="missing_params", error_description="Missing code or state")

    record = validate_and_consume(state, db)
    if record is None:
        oauth_callbacks_counter.labels(network=label, status="invalid_state").inc()
        return frontend_redirect(
            None, error="invalid_state",
            error_description="Authorization request expired or was already used. Please try again."
        )

    return_url = record.return_url
    if record.network != network.value:
        logger.warning(
            f"Provider mismatch on callback: state {mask_state(state)} was issued for {record.network}, "
            f"callback came from {network.value}"
        )
        oauth_callbacks_counter.labels(network=label, status="provider_mismatch").inc()
        return frontend_redirect(return_url, error="provider_mismatch",
                                 error_description="Callback provider does not match the authorization request")

    try:
        adapter = get_provider_registry().get(network)
        token = adapter.exchange_code(code, record.redirect_uri, code_verifier=record.code_verifier)
        if not token.success:
            logger.warning(f"{network.value} code exchange failed: {token.error_code} - {token.error_description}")
            oauth_callbacks_counter.labels(network=label, status="exchange_failed").inc()
            return frontend_redirect(return_url, error=token.error_code or "token_exchange_failed",
                                     error_description=token.error_description or "Token exchange failed")

        user_info = adapter.fetch_user_info(token.access_token)
        if user_info is None:
            logger.warning(f"Connected {network.value} without profile information for account {record.account_id}")

        connection = save_oauth_connection(
            record.account_id, network.value, token, db,
            user_info=user_info,
            extra_data=_connection_extra_data(adapter, network.value, token, user_info),
        )
        dismiss_connection_alerts(connection.id, db)
    except Exception as e:
        db.rollback()
        logger.error(f"{network.value} callback failed: {type(e).__name__}: {e}", exc_info=True)
        oauth_callbacks_counter.labels(network=label, status="server_error").inc()
        return frontend_redirect(return_url, error="server_error",
                                 error_description="Could not complete the connection")

    oauth_callbacks_counter.labels(network=label, status="success").inc()
    logger.info(f"Connected {network.value} for account {record.account_id} (connection {connection.id})")
    return frontend_redirect(return_url, success="true", provider=network.value)


@router.post("/disconnect/{provider}")
def disconnect(
    provider: str,
    account_id: Optional[int] = Query(None, alias="accountId"),
    user_id: int = Depends(require_csrf_new),
    db: Session = Depends(get_db),
):
    """Revoke (best effort) and delete a connection"""
    network = _parse_provider(provider)
    account = _owned_account(account_id, user_id, db)

    connection = get_connection_for(account.id, network.value, db)
    if connection is None:
        raise _bad_request("not_found", f"No {network.value} connection for this account", status_code=404)

    if connection.auth_method == AuthMethod.OAUTH.value and connection.access_token:
        try:
            credentials = get_oauth_credentials(connection)
            if get_provider_registry().get(network).revoke_token(credentials.access_token):
                logger.info(f"Revoked {network.value} token for connection {connection.id}")
        except Exception as e:
            logger.warning(f"Token revoke failed for connection {connection.id}, deleting anyway: {e}")

    connection_id = connection.id
    delete_connection(connection, db)
    dismiss_connection_alerts(connection_id, db)
    return {"success": True, "message": f"Disconnected {network.value}"}
