"""Content models: base content, per-network publish items and media"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class ContentItem(Base):
    """Base content scheduled for publication to one or more networks"""
    __tablename__ = "content_items"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255))
    text = Column(Text, nullable=False, default="")
    state = Column(String(30), default="draft", nullable=False)  # see ContentState
    scheduled_at = Column(DateTime(timezone=True))
    published_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    account = relationship("Account", back_populates="content_items")
    publish_items = relationship("ContentPublishItem", back_populates="content", cascade="all, delete-orphan")
    media = relationship(
        "ContentMedia", back_populates="content", cascade="all, delete-orphan",
        order_by="ContentMedia.sort_order"
    )

    __table_args__ = (
        Index('ix_content_items_state_scheduled_at', 'state', 'scheduled_at'),
    )


class ContentPublishItem(Base):
    """Adapted content for a single network and its publish outcome"""
    __tablename__ = "content_publish_items"

    id = Column(Integer, primary_key=True, index=True)
    content_id = Column(Integer, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    network = Column(String(50), nullable=False)
    text = Column(Text)  # Adapted text; falls back to the base content text
    state = Column(String(20), default="pending", nullable=False)  # pending, ready, published, failed
    published_at = Column(DateTime(timezone=True))
    external_post_id = Column(String(255))
    last_error = Column(Text)
    error_log = Column(JSON, default=list)
    retry_count = Column(Integer, default=0, nullable=False)

    content = relationship("ContentItem", back_populates="publish_items")

    __table_args__ = (
        UniqueConstraint('content_id', 'network', name='uq_content_publish_items_content_network'),
        Index('ix_content_publish_items_state_retry', 'state', 'retry_count'),
    )


class ContentMedia(Base):
    """Media attached to a content item (public URL and/or local file)"""
    __tablename__ = "content_media"

    id = Column(Integer, primary_key=True, index=True)
    content_id = Column(Integer, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(2048))
    local_path = Column(String(1024))
    content_type = Column(String(100), nullable=False)  # e.g. image/jpeg, video/mp4
    sort_order = Column(Integer, default=0, nullable=False)

    content = relationship("ContentItem", back_populates="media")
