"""
Pydantic Schemas for Request/Response Validation

Order creation accepts the client payload shape
    {"groups": [{"items": [{"merchandiseId": "..."}]}]}
with snake_case (merchandise_id) accepted as well.
"""

from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from order_desk.models import MerchandiseType, OrderGroupStatus, OrderStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single catalog reference inside a group."""
    model_config = ConfigDict(populate_by_name=True)

    merchandise_id: str = Field(
        ...,
        min_length=1,
        alias="merchandiseId",
        examples=["0192d8ca-7580-0737-ae8f-4aa2f604155c"],
    )


class OrderGroupCreate(BaseModel):
    """One dish: a base item and its toppings/discounts."""
    items: List[OrderItemCreate] = Field(..., min_length=1)


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    groups: List[OrderGroupCreate] = Field(..., min_length=1)

    def item_groups(self) -> list[list[str]]:
        return [[item.merchandise_id for item in group.items] for group in self.groups]


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class MerchandiseResponse(BaseModel):
    """Catalog item."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price: int
    type: MerchandiseType
    is_available: bool
    created_at: datetime
    updated_at: datetime


class MerchandiseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price: int
    type: MerchandiseType


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    merchandise_id: str
    merchandise: MerchandiseSummary


class OrderGroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: OrderGroupStatus
    items: List[OrderItemResponse]
    subtotal: int


class OrderResponse(BaseModel):
    """Fully hydrated order. ``total`` uses current catalog prices."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    call_number: int
    business_date: date
    status: OrderStatus
    groups: List[OrderGroupResponse]
    total: int
    created_at: datetime
    updated_at: datetime


class GroupStatusResponse(BaseModel):
    """Response after a kitchen action on a group."""
    success: bool = True
    message: str
    group_id: str
    status: OrderGroupStatus


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    errors: List[dict[str, Any]] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    notifications: str
    timestamp: datetime
