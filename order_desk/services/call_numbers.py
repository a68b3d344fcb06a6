"""
Call Number Allocator

Hands out the small pickup number shown to customers. Numbers restart at 1
every local calendar day and increase within the day.

The read-then-insert sequence is not atomic on its own. Uniqueness comes
from the (business_date, call_number) constraint on orders: a creation that
loses the race fails its insert and is retried by the lifecycle engine with
a fresh number.
"""

import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from order_desk.models import Order

logger = logging.getLogger(__name__)


def business_day(as_of: datetime, tz: ZoneInfo) -> date:
    """Local calendar day containing ``as_of``. Naive values are taken as local."""
    if as_of.tzinfo is None:
        return as_of.date()
    return as_of.astimezone(tz).date()


class CallNumberAllocator:
    """Computes the next call number inside the caller's transaction."""

    def __init__(self, session: AsyncSession, tz: ZoneInfo):
        self.session = session
        self.tz = tz

    async def next_call_number(self, as_of: datetime) -> int:
        """
        Next free number for the day containing ``as_of``.

        Orders are bucketed by the business date stored at creation, which is
        the same window as [start of day, start of next day). Callers store
        ``business_day(as_of, tz)`` on the order so the uniqueness constraint
        covers the same day.
        """
        day = business_day(as_of, self.tz)
        result = await self.session.execute(
            select(func.max(Order.call_number)).where(Order.business_date == day)
        )
        current = result.scalar()
        call_number = (current or 0) + 1

        logger.debug(f"Allocated call number {call_number} for {day.isoformat()}")
        return call_number
