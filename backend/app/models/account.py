"""Account (tenant) model"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class Account(Base):
    """A tenant whose social channels are connected and published to"""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    owner = relationship("User", back_populates="accounts")
    connections = relationship("SocialConnection", back_populates="account", cascade="all, delete-orphan")
    content_items = relationship("ContentItem", back_populates="account", cascade="all, delete-orphan")
