"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.account import Account
from app.models.oauth_state import OAuthState
from app.models.social_connection import SocialConnection
from app.models.content import ContentItem, ContentPublishItem, ContentMedia
from app.models.notification import Notification

# Export all for convenience
__all__ = [
    "Base", "User", "Account", "OAuthState", "SocialConnection",
    "ContentItem", "ContentPublishItem", "ContentMedia", "Notification"
]
