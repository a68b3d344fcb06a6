"""
Notification Publisher Abstract Base Class

Defines the publish/subscribe capability the ordering core pushes
lifecycle events through. Topics are plain strings ("kitchen", "payment",
"order-<id>"); the concrete transport is an adapter concern.

Supports both in-memory (development) and Redis (production) implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, AsyncIterator, Optional


@dataclass
class PublishResult:
    """Result from publishing one event to one topic."""
    success: bool
    topic: str
    event: str
    receivers: int = 0
    error_message: Optional[str] = None
    provider: str = "unknown"


@dataclass
class ChannelMessage:
    """One event as delivered to a subscriber."""
    topic: str
    event: str
    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "event": self.event, "payload": self.payload}


class BasePublisher(ABC):
    """Abstract base class for notification channels."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
    ) -> PublishResult:
        """Fire-and-forget delivery of one event to current subscribers."""
        pass

    @abstractmethod
    def subscribe(self, topic: str) -> AsyncContextManager[AsyncIterator[ChannelMessage]]:
        """
        Subscribe to a topic for the lifetime of the context.

        Usage:
            async with publisher.subscribe("kitchen") as messages:
                async for message in messages:
                    ...
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check transport connectivity."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
