"""
Notification Publisher Factory

Returns the in-memory or Redis publisher based on ENV_MODE.
"""

import logging
from functools import lru_cache

from order_desk.core.config import get_settings
from order_desk.services.notifications.base import (
    BasePublisher,
    ChannelMessage,
    PublishResult,
)
from order_desk.services.notifications.emitter import (
    KITCHEN_CHANNEL,
    PAYMENT_CHANNEL,
    NotificationEmitter,
    order_channel,
)
from order_desk.services.notifications.mock import InMemoryPublisher
from order_desk.services.notifications.real import RedisPublisher

logger = logging.getLogger(__name__)


@lru_cache()
def get_publisher() -> BasePublisher:
    """Get the configured notification publisher."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Notification Publisher: Using InMemoryPublisher (development mode)")
        return InMemoryPublisher(queue_size=settings.subscriber_queue_size)
    else:
        logger.info(f"Notification Publisher: Using RedisPublisher ({settings.env_mode.value} mode)")
        return RedisPublisher()


def reset_publisher() -> None:
    """Clear the cached publisher instance."""
    get_publisher.cache_clear()


__all__ = [
    "get_publisher",
    "reset_publisher",
    "BasePublisher",
    "ChannelMessage",
    "PublishResult",
    "InMemoryPublisher",
    "RedisPublisher",
    "NotificationEmitter",
    "KITCHEN_CHANNEL",
    "PAYMENT_CHANNEL",
    "order_channel",
]
