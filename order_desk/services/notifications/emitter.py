"""
Notification Emitter

Turns committed lifecycle changes into channel messages:

    event                  order-<id>  kitchen  payment
    order-created                         x     x (while ORDERED)
    order-status-updated       x          x     x
    group-status-updated       x          x
    order-paid                            x
    order-ready                x          x

Payloads are denormalized so a display can render the notification without
reading the store. Publishing is best-effort: a failure is logged and never
reaches the operation that triggered it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from order_desk.models import Order, OrderGroupStatus, OrderItemGroup, OrderStatus
from order_desk.services.notifications.base import BasePublisher, PublishResult

logger = logging.getLogger(__name__)

KITCHEN_CHANNEL = "kitchen"
PAYMENT_CHANNEL = "payment"

ORDER_CREATED = "order-created"
ORDER_STATUS_UPDATED = "order-status-updated"
GROUP_STATUS_UPDATED = "group-status-updated"
ORDER_PAID = "order-paid"
ORDER_READY = "order-ready"

ORDER_READY_MESSAGE = "Your order is ready! Please come to the counter."


def order_channel(order_id: str) -> str:
    return f"order-{order_id}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def summarize_group(group: OrderItemGroup) -> dict[str, Any]:
    return {
        "id": group.id,
        "status": group.status.value,
        "items": [
            {
                "id": item.id,
                "merchandise": {
                    "id": item.merchandise.id,
                    "name": item.merchandise.name,
                    "type": item.merchandise.type.value,
                    "price": item.merchandise.price,
                },
            }
            for item in group.items
        ],
    }


def summarize_order(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "call_number": order.call_number,
        "status": order.status.value,
        "groups": [summarize_group(group) for group in order.groups],
        "total": order.total,
        "created_at": _iso(order.created_at),
    }


class NotificationEmitter:
    """Publishes lifecycle events through an injected publisher."""

    def __init__(
        self,
        publisher: BasePublisher,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.publisher = publisher
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _publish(self, topics: list[str], event: str, payload: dict[str, Any]) -> list[PublishResult]:
        results = []
        for topic in topics:
            try:
                result = await self.publisher.publish(topic, event, payload)
            except Exception:
                logger.exception(f"Failed to publish {event} to {topic}")
                continue

            if not result.success:
                logger.warning(f"Publish of {event} to {topic} failed: {result.error_message}")
            results.append(result)
        return results

    def _timestamp(self) -> str:
        return self.clock().isoformat()

    async def order_created(self, order: Order) -> list[PublishResult]:
        topics = [KITCHEN_CHANNEL]
        if order.status == OrderStatus.ORDERED:
            topics.append(PAYMENT_CHANNEL)

        logger.info(f"Emitting {ORDER_CREATED} for order #{order.call_number}")
        return await self._publish(topics, ORDER_CREATED, summarize_order(order))

    async def order_status_updated(self, order: Order) -> list[PublishResult]:
        payload = {
            "order_id": order.id,
            "call_number": order.call_number,
            "status": order.status.value,
            "timestamp": self._timestamp(),
        }
        return await self._publish(
            [order_channel(order.id), KITCHEN_CHANNEL, PAYMENT_CHANNEL],
            ORDER_STATUS_UPDATED,
            payload,
        )

    async def group_status_updated(
        self,
        order: Order,
        group_id: str,
        status: OrderGroupStatus,
    ) -> list[PublishResult]:
        group = next((g for g in order.groups if g.id == group_id), None)
        payload = {
            "order_id": order.id,
            "call_number": order.call_number,
            "group_id": group_id,
            "status": status.value,
            "group": summarize_group(group) if group is not None else None,
            "timestamp": self._timestamp(),
        }
        return await self._publish(
            [order_channel(order.id), KITCHEN_CHANNEL],
            GROUP_STATUS_UPDATED,
            payload,
        )

    async def order_paid(self, order: Order) -> list[PublishResult]:
        payload = summarize_order(order)
        payload["timestamp"] = self._timestamp()

        logger.info(f"Emitting {ORDER_PAID} for order #{order.call_number}")
        return await self._publish([KITCHEN_CHANNEL], ORDER_PAID, payload)

    async def order_ready(self, order: Order) -> list[PublishResult]:
        payload = {
            "order_id": order.id,
            "call_number": order.call_number,
            "message": ORDER_READY_MESSAGE,
            "timestamp": self._timestamp(),
        }

        logger.info(f"Emitting {ORDER_READY} for order #{order.call_number}")
        return await self._publish(
            [order_channel(order.id), KITCHEN_CHANNEL],
            ORDER_READY,
            payload,
        )
