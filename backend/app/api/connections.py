"""Connection management API routes"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.security import require_auth, require_csrf_new
from app.db.helpers import (
    get_account_for_user, get_connection, list_connections, save_api_key_connection, set_connection_enabled
)
from app.db.session import get_db
from app.models.enums import SocialNetwork
from app.schemas.connections import ApiKeyCredentialsRequest, ConnectionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/connections", tags=["connections"])


def _require_account(account_id: int, user_id: int, db: Session):
    account = get_account_for_user(account_id, user_id, db)
    if account is None:
        raise HTTPException(404, detail={"error": "not_found", "message": "Account not found"})
    return account


def _owned_connection(connection_id: int, user_id: int, db: Session):
    connection = get_connection(connection_id, db)
    if connection is None or get_account_for_user(connection.account_id, user_id, db) is None:
        raise HTTPException(404, detail={"error": "not_found", "message": "Connection not found"})
    return connection


@router.get("", response_model=List[ConnectionResponse])
def get_connections(
    account_id: int = Query(..., alias="accountId"),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """List an account's connections (never includes credentials)"""
    _require_account(account_id, user_id, db)
    return list_connections(account_id, db)


@router.post("/x/api-key", response_model=ConnectionResponse)
def store_x_api_key(
    body: ApiKeyCredentialsRequest,
    user_id: int = Depends(require_csrf_new),
    db: Session = Depends(get_db),
):
    """Store X OAuth 1.0a user credentials as an API-key connection"""
    _require_account(body.account_id, user_id, db)
    connection = save_api_key_connection(
        body.account_id, SocialNetwork.X.value,
        body.api_key, body.api_secret, body.access_token, body.access_token_secret, db,
    )
    logger.info(f"User {user_id} stored X API-key credentials for account {body.account_id}")
    return connection


@router.post("/{connection_id}/enable", response_model=ConnectionResponse)
def enable_connection(
    connection_id: int,
    user_id: int = Depends(require_csrf_new),
    db: Session = Depends(get_db),
):
    connection = _owned_connection(connection_id, user_id, db)
    return set_connection_enabled(connection, True, db)


@router.post("/{connection_id}/disable", response_model=ConnectionResponse)
def disable_connection(
    connection_id: int,
    user_id: int = Depends(require_csrf_new),
    db: Session = Depends(get_db),
):
    connection = _owned_connection(connection_id, user_id, db)
    return set_connection_enabled(connection, False, db)
