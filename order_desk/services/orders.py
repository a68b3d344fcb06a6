"""
Order Lifecycle Engine

Owns orders from creation to READY, at two nested levels:

    Order:  ORDERED -> PAID -> READY
    Group:  NOT_READY / PREPARING / READY (unconstrained writes)

Rules:
    - create_order validates the whole proposed order (composition and
      availability) before writing, allocates a call number and inserts the
      order, its groups and items in one transaction.
    - pay moves ORDERED to PAID and is accepted again on PAID or READY
      orders without changing them.
    - set_group_status writes any group status. Only a write of READY
      triggers recomputation: when every group is READY and the order is
      PAID, the order becomes READY. An unpaid order stays ORDERED.

Events are published only after the transaction that caused them commits.
"""

import asyncio
import logging
import random
from datetime import datetime
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from order_desk.core.config import get_settings
from order_desk.core.exceptions import ConflictError, InfrastructureError, NotFoundError
from order_desk.models import (
    CALL_NUMBER_CONSTRAINT,
    Order,
    OrderGroupStatus,
    OrderItem,
    OrderItemGroup,
    OrderStatus,
)
from order_desk.services.call_numbers import CallNumberAllocator, business_day
from order_desk.services.catalog import CatalogLookup
from order_desk.services.notifications.emitter import NotificationEmitter
from order_desk.services.validation import OrderValidator

logger = logging.getLogger(__name__)


def _hydrated():
    return selectinload(Order.groups).selectinload(OrderItemGroup.items).selectinload(OrderItem.merchandise)


def _is_call_number_conflict(error: IntegrityError) -> bool:
    """True only for a violation of the per-day call number constraint."""
    constraint = getattr(getattr(error.orig, "diag", None), "constraint_name", None)
    if constraint is not None:
        return constraint == CALL_NUMBER_CONSTRAINT
    # SQLite reports the columns rather than the constraint name
    message = str(error.orig)
    return CALL_NUMBER_CONSTRAINT in message or "orders.business_date, orders.call_number" in message


class OrderLifecycleEngine:
    """
    The ordering state machine.

    Args:
        session_factory: Opens one session per operation
        emitter: Receives committed lifecycle events
        tz: Zone deciding the business day (defaults to settings)
        clock: Returns the current instant (defaults to now in ``tz``)
        max_attempts: Call-number allocation attempts before giving up
        retry_backoff: Upper bound of the jitter slept between attempts
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        emitter: NotificationEmitter,
        tz: Optional[ZoneInfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.emitter = emitter
        self.tz = tz or settings.tz
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.max_attempts = max_attempts or settings.call_number_max_attempts
        self.retry_backoff = settings.call_number_retry_backoff if retry_backoff is None else retry_backoff

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def _load_order(self, session: AsyncSession, order_id: str) -> Optional[Order]:
        result = await session.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(_hydrated())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Fully hydrated order, or None."""
        async with self.session_factory() as session:
            return await self._load_order(session, order_id)

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Order]:
        """Orders newest first, optionally filtered by status and paginated."""
        query = (
            select(Order)
            .options(_hydrated())
            .order_by(Order.created_at.desc(), Order.call_number.desc())
        )
        if status is not None:
            query = query.where(Order.status == status)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_todays_orders(self) -> list[Order]:
        """Orders of the current business day, newest first."""
        today = business_day(self.clock(), self.tz)
        query = (
            select(Order)
            .where(Order.business_date == today)
            .options(_hydrated())
            .order_by(Order.created_at.desc(), Order.call_number.desc())
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_order(self, groups: Sequence[Sequence[str]]) -> Order:
        """
        Validate and create an order from groups of merchandise ids.

        Raises:
            OrderValidationError: every composition, not-found and
                unavailable problem found across the whole order
            InfrastructureError: no call number could be allocated, or the
                store rejected the insert for another reason
        """
        item_groups = [list(item_ids) for item_ids in groups]

        for attempt in range(1, self.max_attempts + 1):
            try:
                order = await self._insert_order(item_groups)
            except ConflictError as e:
                logger.warning(f"{e} (attempt {attempt}/{self.max_attempts})")
                await asyncio.sleep(random.uniform(0, self.retry_backoff * attempt))
                continue

            logger.info(
                f"Order #{order.call_number} created ({order.id}) with "
                f"{len(order.groups)} group(s), total {order.total}"
            )
            await self.emitter.order_created(order)
            return order

        logger.error(f"Gave up allocating a call number after {self.max_attempts} attempts")
        raise InfrastructureError(
            f"Could not allocate a call number after {self.max_attempts} attempts"
        )

    async def _insert_order(self, item_groups: list[list[str]]) -> Order:
        now = self.clock()

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    validator = OrderValidator(CatalogLookup(session))
                    result, resolved = await validator.validate_order(item_groups)
                    result.raise_for_errors()

                    allocator = CallNumberAllocator(session, self.tz)
                    call_number = await allocator.next_call_number(now)

                    order = Order(
                        call_number=call_number,
                        business_date=business_day(now, self.tz),
                        status=OrderStatus.ORDERED,
                        created_at=now,
                        updated_at=now,
                    )
                    for position, item_ids in enumerate(item_groups):
                        group = OrderItemGroup(position=position, status=OrderGroupStatus.NOT_READY)
                        group.items = [
                            OrderItem(position=index, merchandise=resolved[i])
                            for index, i in enumerate(item_ids)
                        ]
                        order.groups.append(group)

                    session.add(order)
                    await session.flush()
                    return await self._load_order(session, order.id)
            except IntegrityError as e:
                if _is_call_number_conflict(e):
                    raise ConflictError(f"Call number race on {business_day(now, self.tz)}") from e
                logger.error(f"Order insert violated a constraint: {e.orig}")
                raise InfrastructureError("Order could not be stored") from e

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def pay(self, order_id: str) -> Order:
        """
        Ensure the order is paid.

        ORDERED becomes PAID. PAID and READY orders are returned unchanged
        and nothing is published for them.

        Raises:
            NotFoundError: the order does not exist
        """
        now = self.clock()

        async with self.session_factory() as session:
            async with session.begin():
                if await session.get(Order, order_id) is None:
                    raise NotFoundError("order", [order_id])

                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == OrderStatus.ORDERED)
                    .values(status=OrderStatus.PAID, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                changed = result.rowcount == 1
                order = await self._load_order(session, order_id)

        if not changed:
            logger.info(f"Order #{order.call_number} already {order.status.value}; pay is a no-op")
            return order

        logger.info(f"Order #{order.call_number} paid")
        await self.emitter.order_status_updated(order)
        await self.emitter.order_paid(order)
        return order

    async def set_group_status(self, group_id: str, status: OrderGroupStatus) -> None:
        """
        Write a group status. Any value is accepted, including moves back.
        The parent order's updated_at is touched in the same transaction.

        Raises:
            NotFoundError: the group does not exist
        """
        status = OrderGroupStatus(status)
        now = self.clock()

        async with self.session_factory() as session:
            async with session.begin():
                group = await session.get(OrderItemGroup, group_id)
                if group is None:
                    raise NotFoundError("order_item_group", [group_id])
                order_id = group.order_id
                group.status = status
                await session.execute(
                    update(Order)
                    .where(Order.id == order_id)
                    .values(updated_at=now)
                    .execution_options(synchronize_session=False)
                )

        logger.info(f"Group {group_id} of order {order_id} set to {status.value}")

        became_ready = False
        if status == OrderGroupStatus.READY:
            # Separate transaction so the group write above is visible
            became_ready = await self._recompute_order_status(order_id)

        order = await self.get_order(order_id)
        if order is None:
            return

        await self.emitter.group_status_updated(order, group_id, status)
        if became_ready:
            await self.emitter.order_status_updated(order)
            await self.emitter.order_ready(order)

    async def prepare(self, group_id: str) -> None:
        await self.set_group_status(group_id, OrderGroupStatus.PREPARING)

    async def mark_ready(self, group_id: str) -> None:
        await self.set_group_status(group_id, OrderGroupStatus.READY)

    async def _recompute_order_status(self, order_id: str) -> bool:
        """
        Advance a PAID order to READY once all of its groups are READY.

        The conditional update makes concurrent completions of the last two
        groups advance the order exactly once.

        Returns:
            True if this call moved the order to READY.
        """
        now = self.clock()

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(OrderItemGroup.status).where(OrderItemGroup.order_id == order_id)
                )
                statuses = list(result.scalars().all())
                if not statuses or any(s != OrderGroupStatus.READY for s in statuses):
                    return False

                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == OrderStatus.PAID)
                    .values(status=OrderStatus.READY, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                advanced = result.rowcount == 1

        if advanced:
            logger.info(f"Order {order_id} is READY")
        else:
            logger.info(f"All groups of order {order_id} are READY; order not PAID, status kept")
        return advanced
