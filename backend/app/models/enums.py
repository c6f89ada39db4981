"""String enums stored in the String status columns"""
from enum import Enum


class SocialNetwork(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    X = "x"
    LINKEDIN = "linkedin"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"

    @classmethod
    def parse(cls, value: str):
        """Parse a provider name from a URL segment; returns None when unknown"""
        if not value:
            return None
        normalized = value.strip().lower()
        if normalized == "twitter":
            normalized = "x"
        try:
            return cls(normalized)
        except ValueError:
            return None


class AuthMethod(str, Enum):
    OAUTH = "oauth"
    API_KEY = "api_key"


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    NEEDS_REAUTH = "needs_reauth"
    REVOKED = "revoked"
    ERROR = "error"


class HealthStatus(str, Enum):
    OK = "ok"
    KO = "ko"


class ContentState(str, Enum):
    DRAFT = "draft"
    PLANNED = "planned"
    ADAPTATION_PENDING = "adaptation_pending"
    ADAPTED = "adapted"
    PARTIALLY_PUBLISHED = "partially_published"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class PublishItemState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    PUBLISHED = "published"
    FAILED = "failed"


class NotificationType(str, Enum):
    REAUTH_REQUIRED = "reauth_required"
    HEALTH_CHECK_FAILED = "health_check_failed"
    PUBLISH_FAILED = "publish_failed"
