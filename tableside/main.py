"""
FastAPI Application Entry Point

Tableside front-of-house API: order lifecycle commands, table session
management and on-demand reconciliation.

Endpoints:
    - POST /api/restaurants/{restaurant_id}/orders: Place an order
    - POST /api/orders/{order_id}/status: Move an order through its lifecycle
    - GET /api/tables: Table sessions
    - POST /api/tables/{table_number}/reserve|clean|available: Staff actions
    - POST /api/tables/sweep: Run the reconciliation sweeps now
    - GET /health: System health check
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import redis

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from tableside.core.config import get_settings, setup_logging
from tableside.exceptions import (
    EmptyOrderError,
    IllegalTransitionError,
    StoreUnavailableError,
    TablesideError,
    TableStateError,
)
from tableside.models import Order, OrderStatus, TableSession
from tableside.schemas import (
    ErrorResponse,
    HealthResponse,
    MaterializeTablesRequest,
    OrderListResponse,
    PlaceOrderRequest,
    ReserveTableRequest,
    SweepResponse,
    TableListResponse,
    TableSummaryResponse,
    TransitionRequest,
)
from tableside.services.container import ServiceContainer, build_services

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    current = get_settings()
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {current.app_name}")
    logger.info(f"   Version: {current.app_version}")
    logger.info(f"   Environment: {current.env_mode.value}")
    logger.info(f"   Debug: {current.debug}")
    logger.info("=" * 60)

    services = build_services(current)
    await services.start()
    app.state.services = services
    logger.info(f"✅ Record Store: {services.store.backend_name}")
    logger.info(f"✅ Background sweeps: {'on' if services.scheduler.is_running else 'off'}")
    logger.info("✅ Application ready!")

    yield  # Application runs

    logger.info("Shutting down...")
    await services.stop()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant front-of-house backend: order lifecycle, table sessions "
        "and the reconciliation that keeps them consistent."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services(request: Request) -> ServiceContainer:
    """Dependency returning the services created at startup."""
    return request.app.state.services


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
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
async def health_check(services: ServiceContainer = Depends(get_services)) -> HealthResponse:
    """Verify all system components are operational."""
    store_status = "healthy" if await services.store.health_check() else "unhealthy"
    dispatcher_status = "closed" if services.dispatcher.is_closed else "healthy"
    if services.scheduler.is_running:
        sweeps_status = "running"
    elif services.settings.enable_background_sweeps:
        sweeps_status = "stopped"
    else:
        sweeps_status = "disabled"

    # The broker only serves out-of-process sweeps; it does not degrade the API.
    try:
        r = redis.Redis.from_url(services.settings.redis_url, socket_timeout=2)
        r.ping()
        broker_status = "healthy"
    except redis.RedisError as e:
        broker_status = f"unavailable: {e}"

    overall = "operational" if store_status == "healthy" and dispatcher_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        store=store_status,
        dispatcher=dispatcher_status,
        sweeps=sweeps_status,
        broker=broker_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/restaurants/{restaurant_id}/orders",
    response_model=Order,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place Order",
)
async def place_order(
    restaurant_id: str,
    order_data: PlaceOrderRequest,
    services: ServiceContainer = Depends(get_services),
) -> Order:
    """Place a cart for a table; the table becomes occupied."""
    logger.info(f"Placing order for table {order_data.table_number} ({restaurant_id})")
    return await services.engine.place_order(
        restaurant_id,
        order_data.table_number,
        [item.to_model() for item in order_data.items],
    )


@app.get(
    "/api/restaurants/{restaurant_id}/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    restaurant_id: str,
    status: Optional[str] = Query(None),
    services: ServiceContainer = Depends(get_services),
) -> OrderListResponse:
    """Orders of a restaurant, newest first."""
    status_enum = None
    if status:
        try:
            status_enum = OrderStatus(status.upper())
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Options: {[s.value for s in OrderStatus]}"
            )

    orders = await services.engine.list_by_restaurant(restaurant_id, status_enum)
    orders.sort(key=lambda o: o.created_at, reverse=True)
    return OrderListResponse(total=len(orders), orders=orders)


@app.get(
    "/api/restaurants/{restaurant_id}/tables/{table_number}/orders/active",
    response_model=OrderListResponse,
    tags=["Orders"],
)
async def list_active_orders(
    restaurant_id: str,
    table_number: int,
    services: ServiceContainer = Depends(get_services),
) -> OrderListResponse:
    """Orders still open at a table."""
    orders = await services.engine.list_active_by_table(restaurant_id, table_number)
    return OrderListResponse(total=len(orders), orders=orders)


@app.get(
    "/api/orders/{order_id}",
    response_model=Order,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    services: ServiceContainer = Depends(get_services),
) -> Order:
    """Get a specific order by ID."""
    order = await services.engine.get_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
    return order


@app.post(
    "/api/orders/{order_id}/status",
    response_model=Order,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Change Order Status",
)
async def change_order_status(
    order_id: str,
    request_data: TransitionRequest,
    services: ServiceContainer = Depends(get_services),
) -> Order:
    """Move an order along its lifecycle."""
    order = await services.engine.transition(order_id, request_data.status, request_data.note)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
    return order


# =============================================================================
# TABLE API ENDPOINTS
# =============================================================================

@app.get("/api/tables", response_model=TableListResponse, tags=["Tables"])
async def list_tables(services: ServiceContainer = Depends(get_services)) -> TableListResponse:
    tables = await services.reconciler.list_tables()
    return TableListResponse(total=len(tables), tables=tables)


@app.get("/api/tables/summary", response_model=TableSummaryResponse, tags=["Tables"])
async def table_summary(services: ServiceContainer = Depends(get_services)) -> TableSummaryResponse:
    return TableSummaryResponse(**await services.reconciler.summary())


@app.get("/api/tables/{table_number}", response_model=TableSession, tags=["Tables"])
async def get_table(
    table_number: int,
    services: ServiceContainer = Depends(get_services),
) -> TableSession:
    table = await services.reconciler.get_table(table_number)
    if table is None:
        raise HTTPException(status_code=404, detail=f"Table {table_number} not found")
    return table


@app.post(
    "/api/restaurants/{restaurant_id}/tables/materialize",
    response_model=TableListResponse,
    tags=["Tables"],
    summary="Sync Tables With Provisioned QR Codes",
)
async def materialize_tables(
    restaurant_id: str,
    request_data: Optional[MaterializeTablesRequest] = None,
    services: ServiceContainer = Depends(get_services),
) -> TableListResponse:
    numbers = request_data.table_numbers if request_data else None
    tables = await services.reconciler.materialize_tables(restaurant_id, numbers)
    return TableListResponse(total=len(tables), tables=tables)


@app.post(
    "/api/restaurants/{restaurant_id}/tables",
    response_model=TableSession,
    status_code=201,
    tags=["Tables"],
    summary="Add Table Manually",
)
async def add_table(
    restaurant_id: str,
    services: ServiceContainer = Depends(get_services),
) -> TableSession:
    return await services.reconciler.add_table(restaurant_id)


def _table_or_404(table: Optional[TableSession], table_number: int) -> TableSession:
    if table is None:
        raise HTTPException(status_code=404, detail=f"Table {table_number} not found")
    return table


@app.post("/api/tables/{table_number}/reserve", response_model=TableSession, tags=["Tables"])
async def reserve_table(
    table_number: int,
    request_data: ReserveTableRequest,
    services: ServiceContainer = Depends(get_services),
) -> TableSession:
    table = await services.reconciler.reserve(
        table_number,
        request_data.customer_name,
        request_data.time,
        request_data.notes,
    )
    return _table_or_404(table, table_number)


@app.post("/api/tables/{table_number}/clean", response_model=TableSession, tags=["Tables"])
async def mark_table_clean(
    table_number: int,
    services: ServiceContainer = Depends(get_services),
) -> TableSession:
    table = await services.reconciler.mark_clean(table_number)
    return _table_or_404(table, table_number)


@app.post("/api/tables/{table_number}/available", response_model=TableSession, tags=["Tables"])
async def mark_table_available(
    table_number: int,
    services: ServiceContainer = Depends(get_services),
) -> TableSession:
    table = await services.reconciler.mark_available(table_number)
    return _table_or_404(table, table_number)


@app.post("/api/tables/sweep", response_model=SweepResponse, tags=["Tables"])
async def run_sweep(services: ServiceContainer = Depends(get_services)) -> SweepResponse:
    """Run both reconciliation sweeps over every table now."""
    report = await services.reconciler.run_sweeps(full=True)
    return SweepResponse(
        full=report.full,
        tables_reset=report.tables_reset,
        orders_closed=report.orders_closed,
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

_ERROR_STATUS = {
    EmptyOrderError: 400,
    IllegalTransitionError: 409,
    TableStateError: 409,
    StoreUnavailableError: 503,
}


@app.exception_handler(TablesideError)
async def domain_exception_handler(request: Request, exc: TablesideError) -> JSONResponse:
    """Map domain errors to HTTP status codes."""
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        400,
    )
    logger.warning(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": type(exc).__name__,
            "detail": str(exc),
        },
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


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def run() -> None:
    """Run the API with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(
        "tableside.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()
