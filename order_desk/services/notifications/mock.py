"""
In-Memory Notification Publisher

Single-process fan-out for development and tests. Each subscriber gets a
bounded queue; when a subscriber falls behind, further messages for it are
dropped rather than blocking the publisher.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from order_desk.services.notifications.base import (
    BasePublisher,
    ChannelMessage,
    PublishResult,
)

logger = logging.getLogger(__name__)


class Subscription:
    """Async iterator over the messages queued for one subscriber."""

    def __init__(self, topic: str, maxsize: int):
        self.topic = topic
        self.queue: asyncio.Queue[ChannelMessage] = asyncio.Queue(maxsize=maxsize)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChannelMessage:
        return await self.queue.get()

    async def get(self, timeout: Optional[float] = None) -> ChannelMessage:
        return await asyncio.wait_for(self.queue.get(), timeout)

    def get_nowait(self) -> ChannelMessage:
        return self.queue.get_nowait()

    def pending(self) -> list[ChannelMessage]:
        """Drain and return everything currently queued."""
        messages = []
        while not self.queue.empty():
            messages.append(self.queue.get_nowait())
        return messages


class InMemoryPublisher(BasePublisher):
    """In-process publisher for development."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: dict[str, set[Subscription]] = defaultdict(set)
        logger.info(f"InMemoryPublisher initialized (queue_size={queue_size})")

    @property
    def provider_name(self) -> str:
        return "memory"

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    async def publish(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
    ) -> PublishResult:
        message = ChannelMessage(topic=topic, event=event, payload=payload)
        receivers = 0

        for subscription in list(self._subscriptions.get(topic, ())):
            try:
                subscription.queue.put_nowait(message)
                receivers += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropped {event} for a slow subscriber on {topic}")

        logger.debug(f"Published {event} to {topic} ({receivers} receiver(s))")
        return PublishResult(
            success=True,
            topic=topic,
            event=event,
            receivers=receivers,
            provider="memory",
        )

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[Subscription]:
        subscription = Subscription(topic, self.queue_size)
        self._subscriptions[topic].add(subscription)
        logger.debug(f"Subscriber joined {topic}")
        try:
            yield subscription
        finally:
            self._subscriptions[topic].discard(subscription)
            if not self._subscriptions[topic]:
                del self._subscriptions[topic]
            logger.debug(f"Subscriber left {topic}")

    async def health_check(self) -> bool:
        """In-process channel is always healthy."""
        return True
