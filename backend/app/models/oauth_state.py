"""OAuthState model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Index
from datetime import datetime, timezone
from app.models.base import Base


class OAuthState(Base):
    """One in-flight interactive authorization attempt (anti-CSRF state + PKCE verifier)"""
    __tablename__ = "oauth_states"

    id = Column(Integer, primary_key=True, index=True)
    state = Column(String(128), unique=True, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, nullable=False)
    network = Column(String(50), nullable=False)
    redirect_uri = Column(String(1024), nullable=False)
    return_url = Column(String(1024))
    code_verifier = Column(String(128))  # PKCE, only for networks that require it
    requested_scopes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_consumed = Column(Boolean, default=False, nullable=False)
    consumed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('ix_oauth_states_expires_consumed', 'expires_at', 'is_consumed'),
    )
