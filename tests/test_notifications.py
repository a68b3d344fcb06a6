"""
Notification Tests

Which events reach which channels, what they carry, and that a broken
channel never breaks the operation that triggered it.
"""
import asyncio
from contextlib import asynccontextmanager

import pytest
from fastapi import WebSocketDisconnect
from redis.exceptions import ConnectionError as RedisConnectionError

from order_desk.core.exceptions import OrderValidationError
from order_desk.main import relay_channel
from order_desk.models import OrderStatus
from order_desk.services.notifications import (
    KITCHEN_CHANNEL,
    PAYMENT_CHANNEL,
    BasePublisher,
    ChannelMessage,
    InMemoryPublisher,
    NotificationEmitter,
    PublishResult,
    RedisPublisher,
    order_channel,
)
from order_desk.services.notifications.emitter import ORDER_READY_MESSAGE
from order_desk.services.orders import OrderLifecycleEngine


class ExplodingPublisher(BasePublisher):
    """Publisher whose transport is down."""

    def __init__(self):
        self.attempts = 0

    @property
    def provider_name(self) -> str:
        return "exploding"

    async def publish(self, topic, event, payload):
        self.attempts += 1
        raise RuntimeError("broker unreachable")

    @asynccontextmanager
    async def subscribe(self, topic):
        yield iter(())

    async def health_check(self) -> bool:
        return False


class BrokenFeedPublisher(BasePublisher):
    """Publisher whose subscription delivers one message, then loses its connection."""

    def __init__(self):
        self.unsubscribed = False

    @property
    def provider_name(self) -> str:
        return "broken-feed"

    async def publish(self, topic, event, payload):
        return PublishResult(success=True, topic=topic, event=event)

    @asynccontextmanager
    async def subscribe(self, topic):
        async def feed():
            yield ChannelMessage(topic=topic, event="order-created", payload={"order_id": "o-1"})
            raise RedisConnectionError("connection lost")

        try:
            yield feed()
        finally:
            self.unsubscribed = True

    async def health_check(self) -> bool:
        return False


class FailingRedis:
    """Stand-in Redis client that refuses every command."""

    async def publish(self, channel, message):
        raise RedisConnectionError("connection refused")

    async def ping(self):
        raise RedisConnectionError("connection refused")


class RecordingRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 2


class FakeWebSocket:
    """Captures what relay_channel sends; disconnects on demand."""

    def __init__(self):
        self.accepted = False
        self.sent = []
        self.closed = asyncio.Event()
        self.close_code = None

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.sent.append(data)

    async def receive_text(self):
        await self.closed.wait()
        raise WebSocketDisconnect(code=1000)

    async def close(self, code=1000):
        self.close_code = code


async def wait_for(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


# ============================================================================
# FAN-OUT PER EVENT
# ============================================================================

@pytest.mark.asyncio
class TestEventFanOut:
    """Channel routing of lifecycle events."""

    async def test_order_created_reaches_kitchen_and_payment(self, lifecycle, publisher, menu):
        async with publisher.subscribe(KITCHEN_CHANNEL) as kitchen, \
                publisher.subscribe(PAYMENT_CHANNEL) as payment:
            order = await lifecycle.create_order([[menu["ramen"].id, menu["egg"].id]])

            kitchen_messages = kitchen.pending()
            payment_messages = payment.pending()

        assert [m.event for m in kitchen_messages] == ["order-created"]
        assert [m.event for m in payment_messages] == ["order-created"]

        payload = kitchen_messages[0].payload
        assert payload["order_id"] == order.id
        assert payload["call_number"] == 1
        assert payload["status"] == "ORDERED"
        assert payload["total"] == 900
        assert [i["merchandise"]["name"] for i in payload["groups"][0]["items"]] == ["Ramen", "Soft-boiled Egg"]

    async def test_rejected_order_publishes_nothing(self, lifecycle, publisher, menu):
        async with publisher.subscribe(KITCHEN_CHANNEL) as kitchen:
            with pytest.raises(OrderValidationError):
                await lifecycle.create_order([[menu["egg"].id]])

            assert kitchen.pending() == []

    async def test_pay_events(self, lifecycle, publisher, menu):
        order = await lifecycle.create_order([[menu["ramen"].id]])

        async with publisher.subscribe(KITCHEN_CHANNEL) as kitchen, \
                publisher.subscribe(PAYMENT_CHANNEL) as payment, \
                publisher.subscribe(order_channel(order.id)) as customer:
            await lifecycle.pay(order.id)

            kitchen_events = [m.event for m in kitchen.pending()]
            payment_events = [m.event for m in payment.pending()]
            customer_messages = customer.pending()

        assert kitchen_events == ["order-status-updated", "order-paid"]
        assert payment_events == ["order-status-updated"]
        assert [m.event for m in customer_messages] == ["order-status-updated"]
        assert customer_messages[0].payload["status"] == OrderStatus.PAID.value

    async def test_repeated_pay_is_silent(self, lifecycle, publisher, menu):
        order = await lifecycle.create_order([[menu["ramen"].id]])
        await lifecycle.pay(order.id)

        async with publisher.subscribe(KITCHEN_CHANNEL) as kitchen:
            await lifecycle.pay(order.id)

            assert kitchen.pending() == []

    async def test_group_progress_events(self, lifecycle, publisher, menu):
        order = await lifecycle.create_order([[menu["ramen"].id]])
        group_id = order.groups[0].id

        async with publisher.subscribe(KITCHEN_CHANNEL) as kitchen, \
                publisher.subscribe(PAYMENT_CHANNEL) as payment, \
                publisher.subscribe(order_channel(order.id)) as customer:
            await lifecycle.prepare(group_id)

            kitchen_messages = kitchen.pending()
            customer_messages = customer.pending()
            payment_messages = payment.pending()

        assert [m.event for m in kitchen_messages] == ["group-status-updated"]
        assert [m.event for m in customer_messages] == ["group-status-updated"]
        assert payment_messages == []
        assert kitchen_messages[0].payload["group_id"] == group_id
        assert kitchen_messages[0].payload["status"] == "PREPARING"

    async def test_completion_events(self, lifecycle, publisher, menu):
        order = await lifecycle.create_order([[menu["ramen"].id]])
        await lifecycle.pay(order.id)

        async with publisher.subscribe(KITCHEN_CHANNEL) as kitchen, \
                publisher.subscribe(order_channel(order.id)) as customer:
            await lifecycle.mark_ready(order.groups[0].id)

            kitchen_events = [m.event for m in kitchen.pending()]
            customer_messages = customer.pending()

        assert kitchen_events == ["group-status-updated", "order-status-updated", "order-ready"]
        assert [m.event for m in customer_messages] == [
            "group-status-updated",
            "order-status-updated",
            "order-ready",
        ]
        ready = customer_messages[-1].payload
        assert ready["call_number"] == order.call_number
        assert ready["message"] == ORDER_READY_MESSAGE

    async def test_unpaid_group_ready_emits_no_order_ready(self, lifecycle, publisher, menu):
        order = await lifecycle.create_order([[menu["ramen"].id]])

        async with publisher.subscribe(order_channel(order.id)) as customer:
            await lifecycle.mark_ready(order.groups[0].id)

            assert [m.event for m in customer.pending()] == ["group-status-updated"]

    async def test_order_channels_are_isolated(self, lifecycle, publisher, menu):
        first = await lifecycle.create_order([[menu["ramen"].id]])
        second = await lifecycle.create_order([[menu["ramen"].id]])

        async with publisher.subscribe(order_channel(second.id)) as other:
            await lifecycle.pay(first.id)

            assert other.pending() == []


# ============================================================================
# FAILURE ISOLATION
# ============================================================================

@pytest.mark.asyncio
class TestPublishFailures:
    """Notification errors are logged, never raised."""

    async def test_operations_succeed_with_broken_publisher(self, session_maker, menu, clock):
        broken = ExplodingPublisher()
        lifecycle = OrderLifecycleEngine(
            session_factory=session_maker,
            emitter=NotificationEmitter(broken, clock=clock),
            clock=clock,
        )

        order = await lifecycle.create_order([[menu["ramen"].id]])
        await lifecycle.pay(order.id)
        await lifecycle.mark_ready(order.groups[0].id)

        assert (await lifecycle.get_order(order.id)).status == OrderStatus.READY
        assert broken.attempts > 0

    async def test_redis_publish_error_reported_as_failed_result(self):
        publisher = RedisPublisher(client=FailingRedis(), channel_prefix="test:")

        result = await publisher.publish(KITCHEN_CHANNEL, "order-created", {"order_id": "x"})

        assert isinstance(result, PublishResult)
        assert result.success is False
        assert "connection refused" in result.error_message
        assert await publisher.health_check() is False

    async def test_redis_envelope(self):
        client = RecordingRedis()
        publisher = RedisPublisher(client=client, channel_prefix="test:")

        result = await publisher.publish("order-abc", "order-ready", {"call_number": 4})

        assert result.success and result.receivers == 2
        channel, message = client.published[0]
        assert channel == "test:order-abc"
        assert '"event": "order-ready"' in message
        assert '"call_number": 4' in message


# ============================================================================
# IN-MEMORY CHANNEL AND LIVE RELAY
# ============================================================================

@pytest.mark.asyncio
class TestLiveRelay:
    """Subscriber bookkeeping and the WebSocket relay."""

    async def test_slow_subscriber_drops_instead_of_blocking(self):
        publisher = InMemoryPublisher(queue_size=1)

        async with publisher.subscribe(KITCHEN_CHANNEL) as kitchen:
            first = await publisher.publish(KITCHEN_CHANNEL, "order-created", {"n": 1})
            second = await publisher.publish(KITCHEN_CHANNEL, "order-created", {"n": 2})

            assert first.receivers == 1
            assert second.receivers == 0
            assert [m.payload["n"] for m in kitchen.pending()] == [1]

        assert publisher.subscriber_count(KITCHEN_CHANNEL) == 0

    async def test_relay_forwards_until_disconnect(self, publisher):
        websocket = FakeWebSocket()
        task = asyncio.create_task(relay_channel(websocket, publisher, KITCHEN_CHANNEL))

        await wait_for(lambda: publisher.subscriber_count(KITCHEN_CHANNEL) == 1)
        await publisher.publish(KITCHEN_CHANNEL, "order-paid", {"order_id": "o-1"})
        await wait_for(lambda: len(websocket.sent) == 1)

        websocket.closed.set()
        await asyncio.wait_for(task, 2.0)

        assert websocket.accepted
        assert websocket.sent == [{
            "topic": KITCHEN_CHANNEL,
            "event": "order-paid",
            "payload": {"order_id": "o-1"},
        }]
        assert publisher.subscriber_count(KITCHEN_CHANNEL) == 0
        assert websocket.close_code is None

    async def test_relay_closes_socket_when_feed_fails(self):
        """
        A dead feed must not leave a silent display behind.

        Scenario:
        - Subscription delivers one message, then the broker connection drops
        - Client never disconnects on its own
        - Expected: relay returns, socket closed with 1011, subscription released
        """
        publisher = BrokenFeedPublisher()
        websocket = FakeWebSocket()

        await asyncio.wait_for(relay_channel(websocket, publisher, KITCHEN_CHANNEL), 2.0)

        assert [m["event"] for m in websocket.sent] == ["order-created"]
        assert websocket.close_code == 1011
        assert publisher.unsubscribed
