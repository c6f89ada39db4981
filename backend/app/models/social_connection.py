"""SocialConnection model"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class SocialConnection(Base):
    """Credentials and health of one network connection for an account (secrets encrypted)"""
    __tablename__ = "social_connections"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    network = Column(String(50), nullable=False)  # facebook, instagram, x, linkedin, tiktok, youtube
    auth_method = Column(String(20), default="oauth", nullable=False)  # oauth, api_key

    # OAuth credentials (encrypted)
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))
    refresh_token_expires_at = Column(DateTime(timezone=True))
    scopes = Column(Text)

    # OAuth 1.0a credentials for the API-key path (encrypted)
    api_key = Column(Text)
    api_secret = Column(Text)
    access_token_secret = Column(Text)

    connection_status = Column(String(20), default="pending", nullable=False)  # pending, connected, needs_reauth, revoked, error
    health_status = Column(String(5), default="ok", nullable=False)  # ok, ko
    last_health_check = Column(DateTime(timezone=True))
    last_error_message = Column(Text)
    last_oauth_error_code = Column(String(100))
    last_refresh_attempt_at = Column(DateTime(timezone=True))
    last_refresh_success_at = Column(DateTime(timezone=True))
    is_enabled = Column(Boolean, default=True, nullable=False)

    # Provider-side identity (reverse lookup for data deletion requests)
    external_user_id = Column(String(255), index=True)
    external_channel_id = Column(String(255))
    external_username = Column(String(255))
    extra_data = Column(JSON, default=dict)  # page id, person URN, ...

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationship
    account = relationship("Account", back_populates="connections")

    __table_args__ = (
        UniqueConstraint('account_id', 'network', name='uq_social_connections_account_network'),
        Index('ix_social_connections_refresh_scan', 'is_enabled', 'auth_method', 'connection_status', 'token_expires_at'),
    )
