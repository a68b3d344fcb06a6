"""
Redis Notification Publisher

Production implementation using Redis pub/sub, so every API worker and
every connected display share the same channels.

Messages are JSON envelopes: {"event": "...", "payload": {...}}.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from order_desk.core.config import get_settings
from order_desk.services.notifications.base import (
    BasePublisher,
    ChannelMessage,
    PublishResult,
)

logger = logging.getLogger(__name__)


class RedisPublisher(BasePublisher):
    """Production publisher backed by Redis pub/sub."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        channel_prefix: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        settings = get_settings()
        self.channel_prefix = settings.notification_channel_prefix if channel_prefix is None else channel_prefix
        self.client = client or aioredis.from_url(
            redis_url or settings.redis_url,
            decode_responses=True,
        )
        logger.info("RedisPublisher initialized")

    @property
    def provider_name(self) -> str:
        return "redis"

    def channel_for(self, topic: str) -> str:
        return f"{self.channel_prefix}{topic}"

    async def publish(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
    ) -> PublishResult:
        """Publish via Redis."""
        envelope = json.dumps({"event": event, "payload": payload}, default=str)

        try:
            receivers = await self.client.publish(self.channel_for(topic), envelope)
        except RedisError as e:
            logger.error(f"Redis publish error on {topic}: {e}")
            return PublishResult(
                success=False,
                topic=topic,
                event=event,
                error_message=str(e),
                provider="redis",
            )

        logger.debug(f"Published {event} to {topic} ({receivers} receiver(s))")
        return PublishResult(
            success=True,
            topic=topic,
            event=event,
            receivers=receivers,
            provider="redis",
        )

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[AsyncIterator[ChannelMessage]]:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self.channel_for(topic))
        try:
            yield self._iter_messages(pubsub, topic)
        finally:
            await pubsub.unsubscribe(self.channel_for(topic))
            await pubsub.aclose()

    async def _iter_messages(self, pubsub, topic: str) -> AsyncIterator[ChannelMessage]:
        async for raw in pubsub.listen():
            if raw.get("type") != "message":
                continue
            try:
                envelope = json.loads(raw["data"])
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed message on {topic}")
                continue
            yield ChannelMessage(
                topic=topic,
                event=envelope.get("event", ""),
                payload=envelope.get("payload", {}),
            )

    async def health_check(self) -> bool:
        """Check Redis connectivity."""
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()
