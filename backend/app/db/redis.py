"""Redis client for session management and per-item leases"""
import logging
from typing import Optional

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60


def set_session(session_id: str, user_id: int) -> None:
    """Store session in Redis"""
    key = f"session:{session_id}"
    get_redis_client().setex(key, SESSION_TTL, user_id)


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    key = f"session:{session_id}"
    user_id = get_redis_client().get(key)
    return int(user_id) if user_id else None


def set_csrf_token(session_id: str, token: str) -> None:
    """Store CSRF token in Redis"""
    get_redis_client().setex(f"csrf:{session_id}", SESSION_TTL, token)


def get_csrf_token(session_id: str) -> Optional[str]:
    """Get CSRF token from Redis"""
    return get_redis_client().get(f"csrf:{session_id}")


def acquire_lock(lock_key: str, timeout: int = 30) -> bool:
    """Acquire a distributed lock using Redis SET with NX and EX.

    Args:
        lock_key: The lock key to acquire
        timeout: Lock timeout in seconds (default 30)

    Returns:
        True if lock was acquired, False if lock already exists
    """
    # SET key value NX EX timeout - atomically set if not exists with expiration
    result = get_redis_client().set(lock_key, "1", nx=True, ex=timeout)
    return result is True


def release_lock(lock_key: str) -> None:
    """Release a distributed lock by deleting the key."""
    get_redis_client().delete(lock_key)


def claim_lease(kind: str, entity_id: int, timeout: Optional[int] = None) -> bool:
    """Claim a short-lived lease on one entity (connection refresh, publish item)

    Keeps two scheduler instances from processing the same entity at once.
    When Redis is unreachable the lease is granted so a single instance keeps working.
    """
    key = f"lease:{kind}:{entity_id}"
    try:
        return acquire_lock(key, timeout or settings.ITEM_LEASE_SECONDS)
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable, granting lease {key} without coordination: {e}")
        return True


def release_lease(kind: str, entity_id: int) -> None:
    key = f"lease:{kind}:{entity_id}"
    try:
        release_lock(key)
    except redis.RedisError as e:
        # The lease expires on its own
        logger.warning(f"Failed to release lease {key}: {e}")
