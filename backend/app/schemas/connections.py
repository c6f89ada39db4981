"""Pydantic schemas for connection management endpoints"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ConnectionResponse(BaseModel):
    """Connection details safe to return to the UI (no secrets)"""
    id: int
    account_id: int
    network: str
    auth_method: str
    connection_status: str
    health_status: str
    is_enabled: bool
    external_username: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    last_health_check: Optional[datetime] = None
    last_error_message: Optional[str] = None

    model_config = {"from_attributes": True}


class ApiKeyCredentialsRequest(BaseModel):
    """OAuth 1.0a credentials for the X API-key path"""
    account_id: int
    api_key: str = Field(..., min_length=1)
    api_secret: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    access_token_secret: str = Field(..., min_length=1)
