"""Live message updates over Redis Pub/Sub.

Every message insert, content patch and delete is announced on the owning
chat's channel as a JSON envelope ``{"event": ..., "message": {...}}``.
Readers that hold a WebSocket open on the chat receive the full message
snapshot, so a dropped notification is repaired by the next one.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.asyncio.client import PubSub

logger = structlog.get_logger()

MESSAGE_CREATED = "message_created"
MESSAGE_UPDATED = "message_updated"
MESSAGE_DELETED = "message_deleted"


def chat_channel(chat_id: int) -> str:
    return f"chat:{chat_id}"


class MessageEventPublisher:
    """Publishes message snapshots to the per-chat channel."""

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None

    async def connect(self) -> None:
        """Open the Redis connection and verify it answers."""
        self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        await self._redis.ping()
        logger.info("redis_connected", url=self._redis_url)

    async def publish_message(self, event: str, message: dict[str, Any]) -> None:
        """Announce *event* for *message* on its chat's channel."""
        if self._redis is None:
            raise RuntimeError("MessageEventPublisher is not connected. Call connect() first.")
        channel = chat_channel(message["chat_id"])
        payload = json.dumps({"event": event, "message": message}, default=str)
        await self._redis.publish(channel, payload)
        logger.debug("message_event_published", channel=channel, event=event, message_id=message["id"])

    async def subscribe(self, chat_id: int) -> PubSub:
        """Return a fresh pubsub subscribed to one chat's channel.

        Each reader gets its own pubsub so unsubscribing one does not
        affect the others.
        """
        if self._redis is None:
            raise RuntimeError("MessageEventPublisher is not connected. Call connect() first.")
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(chat_channel(chat_id))
        return pubsub

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("redis_closed")
