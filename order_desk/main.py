"""
FastAPI Application Entry Point

Order Desk - counter ordering with kitchen and payment displays.

Endpoints:
    - GET  /merchandise: Menu (read-only)
    - POST /orders: Create order
    - GET  /orders: List orders
    - GET  /orders/today: Orders of the current business day
    - GET  /orders/{id}: Order detail
    - POST /orders/{id}/pay: Mark order paid
    - POST /order-item-groups/{id}/prepare: Kitchen starts a dish
    - POST /order-item-groups/{id}/ready: Kitchen finishes a dish
    - WS   /ws/kitchen, /ws/payment, /ws/orders/{id}: Live updates
    - GET  /health: System health check
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Optional, Type, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_desk.core.config import get_settings, setup_logging
from order_desk.core.exceptions import InfrastructureError, NotFoundError, OrderValidationError
from order_desk.database import get_db, get_engine, get_session_maker, init_db
from order_desk.models import MerchandiseType, OrderGroupStatus, OrderStatus
from order_desk.schemas import (
    ErrorResponse,
    GroupStatusResponse,
    HealthResponse,
    MerchandiseResponse,
    OrderCreate,
    OrderResponse,
)
from order_desk.services.catalog import CatalogLookup
from order_desk.services.notifications import (
    KITCHEN_CHANNEL,
    PAYMENT_CHANNEL,
    BasePublisher,
    NotificationEmitter,
    get_publisher,
    order_channel,
)
from order_desk.services.orders import OrderLifecycleEngine

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_lifecycle_engine() -> OrderLifecycleEngine:
    """Engine wired to the application session factory and publisher."""
    return OrderLifecycleEngine(
        session_factory=get_session_maker(),
        emitter=NotificationEmitter(get_publisher()),
    )


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Timezone: {settings.timezone}")
    logger.info("=" * 60)

    await init_db(get_engine())
    logger.info("✅ Database initialized")

    publisher = get_publisher()
    logger.info(f"✅ Notification Publisher: {publisher.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    logger.info("Shutting down...")
    await publisher.close()
    await get_engine().dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Counter ordering backend: customers order and pay, the kitchen "
        "progresses each dish, and every display follows along live."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def parse_enum(enum_cls: Type[E], value: Optional[str], field: str) -> Optional[E]:
    """Case-insensitive enum query parameter, 400 on unknown values."""
    if value is None:
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field}. Options: {[e.value for e in enum_cls]}"
        )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    publisher: BasePublisher = Depends(get_publisher),
) -> HealthResponse:
    """Verify the database and the notification channel are reachable."""

    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    notification_status = "healthy" if await publisher.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        notifications=notification_status,
        timestamp=datetime.now(settings.tz),
    )


# =============================================================================
# MERCHANDISE (READ-ONLY)
# =============================================================================

@app.get(
    "/merchandise",
    response_model=list[MerchandiseResponse],
    tags=["Merchandise"],
    summary="List Menu",
)
async def list_merchandise(
    available: Optional[bool] = Query(None),
    category: Optional[str] = Query(None, alias="type"),
    db: AsyncSession = Depends(get_db),
) -> list[MerchandiseResponse]:
    category_enum = parse_enum(MerchandiseType, category, "type")
    items = await CatalogLookup(db).list_items(available=available, category=category_enum)
    return [MerchandiseResponse.model_validate(item) for item in items]


@app.get(
    "/merchandise/{merchandise_id}",
    response_model=MerchandiseResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Merchandise"],
)
async def get_merchandise(
    merchandise_id: str,
    db: AsyncSession = Depends(get_db),
) -> MerchandiseResponse:
    item = await CatalogLookup(db).find_by_id(merchandise_id)
    if item is None:
        raise NotFoundError("merchandise", [merchandise_id])
    return MerchandiseResponse.model_validate(item)


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/orders",
    status_code=201,
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    engine: OrderLifecycleEngine = Depends(get_lifecycle_engine),
) -> OrderResponse:
    """
    Create a new order.

    All groups are validated together; a rejection lists every problem
    found (composition, unknown ids, unavailable items).
    """
    logger.info(f"Creating order with {len(order_data.groups)} group(s)")
    order = await engine.create_order(order_data.item_groups())
    return OrderResponse.model_validate(order)


@app.get(
    "/orders",
    response_model=list[OrderResponse],
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    status: Optional[str] = Query(None),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
    engine: OrderLifecycleEngine = Depends(get_lifecycle_engine),
) -> list[OrderResponse]:
    """Retrieve orders, newest first."""
    status_enum = parse_enum(OrderStatus, status, "status")
    orders = await engine.list_orders(status=status_enum, limit=limit, offset=offset)
    return [OrderResponse.model_validate(order) for order in orders]


@app.get(
    "/orders/today",
    response_model=list[OrderResponse],
    tags=["Orders"],
)
async def list_todays_orders(
    engine: OrderLifecycleEngine = Depends(get_lifecycle_engine),
) -> list[OrderResponse]:
    orders = await engine.list_todays_orders()
    return [OrderResponse.model_validate(order) for order in orders]


@app.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_lifecycle_engine),
) -> OrderResponse:
    """Get a specific order by ID."""
    order = await engine.get_order(order_id)
    if order is None:
        raise NotFoundError("order", [order_id])
    return OrderResponse.model_validate(order)


@app.post(
    "/orders/{order_id}/pay",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def pay_order(
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_lifecycle_engine),
) -> OrderResponse:
    """Mark an order paid. Repeating the call is accepted."""
    order = await engine.pay(order_id)
    return OrderResponse.model_validate(order)


# =============================================================================
# KITCHEN ENDPOINTS
# =============================================================================

@app.post(
    "/order-item-groups/{group_id}/prepare",
    response_model=GroupStatusResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Kitchen"],
)
async def prepare_group(
    group_id: str,
    engine: OrderLifecycleEngine = Depends(get_lifecycle_engine),
) -> GroupStatusResponse:
    await engine.prepare(group_id)
    return GroupStatusResponse(
        message="Group marked as preparing",
        group_id=group_id,
        status=OrderGroupStatus.PREPARING,
    )


@app.post(
    "/order-item-groups/{group_id}/ready",
    response_model=GroupStatusResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Kitchen"],
)
async def mark_group_ready(
    group_id: str,
    engine: OrderLifecycleEngine = Depends(get_lifecycle_engine),
) -> GroupStatusResponse:
    await engine.mark_ready(group_id)
    return GroupStatusResponse(
        message="Group marked as ready",
        group_id=group_id,
        status=OrderGroupStatus.READY,
    )


# =============================================================================
# LIVE UPDATES
# =============================================================================

async def relay_channel(websocket: WebSocket, publisher: BasePublisher, topic: str) -> None:
    """
    Forward every message on ``topic`` until the client disconnects.

    If the feed dies first, the socket is closed with 1011 so the display
    reconnects and re-fetches the state it may have missed.
    """
    await websocket.accept()
    logger.info(f"WebSocket client subscribed to {topic}")

    async with publisher.subscribe(topic) as messages:
        async def forward() -> None:
            async for message in messages:
                await websocket.send_json(message.to_dict())

        async def receive() -> None:
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket client left {topic}")

        forwarder = asyncio.create_task(forward())
        receiver = asyncio.create_task(receive())
        try:
            done, _ = await asyncio.wait(
                {forwarder, receiver},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (forwarder, receiver):
                task.cancel()
            await asyncio.gather(forwarder, receiver, return_exceptions=True)

        if forwarder in done:
            error = None if forwarder.cancelled() else forwarder.exception()
            if error is not None:
                logger.error(f"Feed for {topic} failed: {error}")
            else:
                logger.warning(f"Feed for {topic} ended")
            await websocket.close(code=1011)


@app.websocket("/ws/kitchen")
async def kitchen_updates(websocket: WebSocket, publisher: BasePublisher = Depends(get_publisher)):
    await relay_channel(websocket, publisher, KITCHEN_CHANNEL)


@app.websocket("/ws/payment")
async def payment_updates(websocket: WebSocket, publisher: BasePublisher = Depends(get_publisher)):
    await relay_channel(websocket, publisher, PAYMENT_CHANNEL)


@app.websocket("/ws/orders/{order_id}")
async def order_updates(
    websocket: WebSocket,
    order_id: str,
    publisher: BasePublisher = Depends(get_publisher),
):
    await relay_channel(websocket, publisher, order_channel(order_id))


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderValidationError)
async def order_validation_handler(request: Request, exc: OrderValidationError) -> JSONResponse:
    logger.info(f"Rejected order: {exc}")
    body = ErrorResponse(
        error="Order validation failed",
        detail=str(exc),
        errors=[e.to_dict() for e in exc.errors],
    )
    return JSONResponse(status_code=400, content=body.model_dump())


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    body = ErrorResponse(error="Not Found", detail=str(exc), errors=[exc.to_dict()])
    return JSONResponse(status_code=404, content=body.model_dump())


@app.exception_handler(InfrastructureError)
async def infrastructure_handler(request: Request, exc: InfrastructureError) -> JSONResponse:
    logger.error(f"Infrastructure failure: {exc}")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal Server Error",
            detail=str(exc) if settings.debug else "An unexpected error occurred",
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
