"""
SQLAlchemy Database Models

Four related record sets:
- merchandise: the catalog (base items, toppings, discounts)
- orders: one customer order with its per-day call number
- order_item_groups: one dish and its modifiers, the unit of kitchen work
- order_items: one catalog reference inside a group

Prices are never copied onto orders; totals are computed from the live
catalog price of each referenced item.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from order_desk.database import Base


CALL_NUMBER_CONSTRAINT = "uq_orders_business_date_call_number"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class MerchandiseType(str, enum.Enum):
    """Catalog item category."""
    BASE_ITEM = "BASE_ITEM"
    TOPPING = "TOPPING"
    DISCOUNT = "DISCOUNT"


class OrderStatus(str, enum.Enum):
    """Order status written by the lifecycle engine."""
    ORDERED = "ORDERED"
    PAID = "PAID"
    READY = "READY"


class OrderGroupStatus(str, enum.Enum):
    """Kitchen progress of a single group."""
    NOT_READY = "NOT_READY"
    PREPARING = "PREPARING"
    READY = "READY"


class Merchandise(Base):
    """
    Catalog item.

    Price and availability may change at any time; orders only hold a
    reference, so a price edit shows up on historical orders too.
    """
    __tablename__ = "merchandise"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    price = Column(Integer, nullable=False)  # negative for discounts
    type = Column(Enum(MerchandiseType), nullable=False, index=True)
    is_available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Merchandise {self.name} - {self.type.value} - {self.price}>"


class Order(Base):
    """
    Main Order table.

    call_number restarts at 1 every business day; the unique constraint on
    (business_date, call_number) is what makes concurrent allocation safe.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("business_date", "call_number", name=CALL_NUMBER_CONSTRAINT),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    call_number = Column(Integer, nullable=False)
    business_date = Column(Date, nullable=False, index=True)
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.ORDERED,
        nullable=False,
        index=True
    )

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    groups = relationship(
        "OrderItemGroup",
        back_populates="order",
        order_by="OrderItemGroup.position",
        cascade="all, delete-orphan",
    )

    @property
    def total(self) -> int:
        """Sum of the current catalog prices of every item in the order."""
        return sum(group.subtotal for group in self.groups)

    def __repr__(self):
        return f"<Order #{self.call_number} ({self.business_date}) - {self.status.value}>"


class OrderItemGroup(Base):
    """One dish: at most one base item plus its toppings and discounts."""
    __tablename__ = "order_item_groups"

    id = Column(String(36), primary_key=True, default=_new_id)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    status = Column(
        Enum(OrderGroupStatus),
        default=OrderGroupStatus.NOT_READY,
        nullable=False,
    )

    order = relationship("Order", back_populates="groups")
    items = relationship(
        "OrderItem",
        back_populates="group",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def subtotal(self) -> int:
        return sum(item.merchandise.price for item in self.items)

    def __repr__(self):
        return f"<OrderItemGroup {self.id} - {self.status.value}>"


class OrderItem(Base):
    """Immutable reference from a group to a catalog item."""
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    group_id = Column(String(36), ForeignKey("order_item_groups.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    merchandise_id = Column(String(36), ForeignKey("merchandise.id"), nullable=False, index=True)

    group = relationship("OrderItemGroup", back_populates="items")
    merchandise = relationship("Merchandise")

    def __repr__(self):
        return f"<OrderItem {self.merchandise_id}>"
