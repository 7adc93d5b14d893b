"""
Token Blacklist Management
==========================

Redis-backed token blacklist for fast JWT revocation checks.
Falls back to the database table when Redis is not configured or unreachable.
"""

import logging
from datetime import datetime
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError

from .config import get_settings

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "token:blacklist:"

_redis_client: Optional[Redis] = None


def get_redis_client() -> Optional[Redis]:
    """Get Redis client (singleton). None when REDIS_URL is unset or the server is down."""
    global _redis_client

    redis_url = get_settings().redis_url
    if not redis_url:
        return None

    if _redis_client is None:
        try:
            client = Redis.from_url(redis_url, decode_responses=True)
            client.ping()
            _redis_client = client
        except RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Using database fallback.")
            return None

    return _redis_client


def reset_redis_client() -> None:
    """Drop the cached client (primarily for tests)."""
    global _redis_client
    _redis_client = None


def add_to_blacklist(jti: str, expires_at: datetime, token_type: str = "access") -> bool:
    """
    Add a token JTI to the Redis blacklist.

    Args:
        jti: JWT ID (unique identifier)
        expires_at: When the token would naturally expire (naive UTC)
        token_type: "access" or "refresh"

    Returns:
        True if added to Redis, False if the caller must rely on the database copy
    """
    redis = get_redis_client()

    if redis:
        try:
            # TTL = time until natural expiration, at least a minute
            ttl_seconds = max(int((expires_at - datetime.utcnow()).total_seconds()), 60)
            redis.setex(f"{BLACKLIST_PREFIX}{jti}", ttl_seconds, token_type)
            return True
        except RedisError as e:
            logger.warning(f"Redis blacklist add failed: {e}")

    return False


def is_blacklisted(jti: str) -> Optional[bool]:
    """
    Check if a token JTI is blacklisted in Redis.

    Returns:
        True if blacklisted, None if the caller must check the database
    """
    redis = get_redis_client()

    if redis:
        try:
            if redis.exists(f"{BLACKLIST_PREFIX}{jti}"):
                return True
        except RedisError as e:
            logger.warning(f"Redis blacklist check failed: {e}")

    # Tokens revoked while Redis was down only live in the database
    return None


def remove_expired_blacklist_entries(db_session) -> int:
    """
    Clean up expired blacklist entries from database.

    Returns:
        Number of entries removed
    """
    from .db.models import TokenBlacklist

    result = db_session.query(TokenBlacklist).filter(
        TokenBlacklist.expires_at < datetime.utcnow()
    ).delete()

    db_session.commit()
    return result


def sync_to_redis(db_session, max_entries: int = 10000) -> int:
    """
    Copy active blacklist entries from database to Redis.

    Run at startup so a restarted Redis still rejects revoked tokens.

    Returns:
        Number of entries synced
    """
    from .db.models import TokenBlacklist

    if not get_redis_client():
        return 0

    entries = db_session.query(TokenBlacklist).filter(
        TokenBlacklist.expires_at > datetime.utcnow()
    ).limit(max_entries).all()

    count = 0
    for entry in entries:
        if add_to_blacklist(entry.jti, entry.expires_at, entry.token_type):
            count += 1

    logger.info(f"Synced {count} blacklist entries to Redis")
    return count
