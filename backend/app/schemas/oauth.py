"""Pydantic schemas for provider authentication results"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TokenResult(BaseModel):
    """Outcome of a code exchange or token refresh"""
    success: bool
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    scopes: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def failure(cls, error_code: str, error_description: Optional[str] = None) -> "TokenResult":
        return cls(success=False, error_code=error_code, error_description=error_description)


class UserInfo(BaseModel):
    """Provider profile normalized to a common shape"""
    id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    # Identity that data deletion callbacks refer to, when it differs from id
    # (Instagram connections are owned by a Facebook user)
    owner_id: Optional[str] = None


class RefreshOutcome(BaseModel):
    """Result of refreshing a single connection"""
    connection_id: int
    outcome: str  # refreshed, not_found, not_applicable, needs_reauth, failed, error
    success: bool = False
    error_code: Optional[str] = None
    message: Optional[str] = None
