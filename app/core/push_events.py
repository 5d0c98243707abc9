"""
Cross-process wake-ups for push login waiters.

Every transition out of PENDING is published on a Redis channel named after
the request. A waiter in any API worker subscribes before it re-reads the
row, so an approval or cancel handled by another process resolves it at
once. Messages only wake waiters; the outcome is always read back from the
database. When Redis is unavailable waiters fall back to in-process wake-ups
and their deadline.
"""

import logging
import uuid
from typing import Optional
import redis
import redis.asyncio as aioredis

from app.core.config import settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "push_login:"


def channel_name(request_id: uuid.UUID) -> str:
    return f"{CHANNEL_PREFIX}{request_id}"


class PushSubscription:
    """One waiter's subscription to its request's channel."""

    def __init__(self, client: aioredis.Redis, pubsub):
        self._client = client
        self._pubsub = pubsub

    async def next_status(self) -> Optional[str]:
        """Wait for the next published status. None if the subscription broke."""
        try:
            async for message in self._pubsub.listen():
                if message["type"] == "message":
                    return message["data"]
        except redis.RedisError as e:
            logger.warning(f"Push event subscription lost: {e}")
        return None

    async def close(self) -> None:
        try:
            await self._pubsub.aclose()
            await self._client.aclose()
        except redis.RedisError as e:
            logger.warning(f"Error closing push event subscription: {e}")


class PushEventBus:
    """Redis pub/sub for push login status changes."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self._client: Optional[redis.Redis] = None

    def _publisher(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=0.5,
                socket_timeout=0.5
            )
        return self._client

    def publish(self, request_id: uuid.UUID, status: str) -> None:
        try:
            self._publisher().publish(channel_name(request_id), status)
        except redis.RedisError as e:
            # Waiters in other processes fall back to their deadline
            logger.warning(f"Could not publish push login {request_id} -> {status}: {e}")

    async def subscribe(self, request_id: uuid.UUID) -> Optional[PushSubscription]:
        client = aioredis.Redis.from_url(self.url, decode_responses=True, socket_connect_timeout=0.5)
        pubsub = client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(channel_name(request_id))
        except redis.RedisError as e:
            logger.warning(f"Could not subscribe to push login {request_id}: {e}")
            await PushSubscription(client, pubsub).close()
            return None
        return PushSubscription(client, pubsub)
