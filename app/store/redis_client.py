"""
Redis connection and key layout.

Redis is both the persistence layer (one JSON blob per user-day, one per
user profile) and the broadcast bus for schedule change notifications.
"""

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "schedule:updates"
USERS_INDEX = "users"


def schedule_key(user_id: str, date: str) -> str:
    return f"schedule:{user_id}:{date}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def persona_key(user_id: str) -> str:
    return f"persona:{user_id}"


def conversation_key(conversation_id: str) -> str:
    return f"conversation:{conversation_id}:userId"


def user_channel(user_id: str) -> str:
    return f"{GLOBAL_CHANNEL}:{user_id}"


def connect(redis_url: str) -> redis.Redis:
    """Create a client; the pool connects lazily on first command."""
    client = redis.from_url(
        redis_url,
        decode_responses=True,
        health_check_interval=30,
        retry_on_timeout=True,
    )
    logger.info(f"Redis client created: {redis_url}")
    return client
