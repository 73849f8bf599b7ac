"""
FastAPI Application Entry Point

Table Ordering System - Dual Persistence Architecture
Customers order from their table, staff run the kitchen and the cashier;
data lives in the shared remote database when one is configured and in
local JSON files otherwise.

Endpoints:
    - GET/POST /api/products, DELETE /api/products/{id}: Menu management
    - GET/POST /api/orders, PATCH /api/orders/{id}/status: Orders
    - GET /api/tables, POST /api/tables/{id}/close-request|finalize: Bills
    - GET /api/tables/{id}/bill: Consumed items of the open bill
    - POST /api/reports/daily: AI sales report
    - GET /api/diagnostics: Storage self-test
    - GET/PUT/DELETE /api/config/database: Remote database config
    - WS /ws/products|orders|tables: Live snapshots
    - WS /ws/tables/{id}/session: Payment-confirmed detection
    - GET /health: System health check

Version: 1.0.0
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings, setup_logging
from app.schemas import (
    BillLine,
    BillResponse,
    DatabaseConfig,
    DatabaseModeResponse,
    DiagnosticsResponse,
    ErrorResponse,
    FinalizeTableResponse,
    HealthResponse,
    Order,
    OrderCreate,
    OrderListResponse,
    OrderStatus,
    OrderStatusUpdate,
    Product,
    ReportResponse,
    TableCloseRequest,
    TableSession,
    TableStatus,
)
from app.services.report import get_report_generator
from app.services.sales import summarize_sales
from app.services.session_watch import TableSessionWatcher
from app.storage import (
    InsufficientStockError,
    OrderNotFoundError,
    PayloadTooLargeError,
    PersistenceService,
    ProductNotFoundError,
    StorageError,
    clear_database_config,
    get_backend_selector,
    get_persistence_service,
    save_database_config,
)
from app.storage.rules import is_settleable

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

    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {current.app_name}")
    logger.info(f"   Version: {current.app_version}")
    logger.info(f"   Environment: {current.env_mode.value}")
    logger.info(f"   Debug: {current.debug}")
    logger.info("=" * 60)

    service = get_persistence_service()
    try:
        await service.start()
        logger.info(f"✅ Storage ready ({service.mode})")
    except Exception as e:
        logger.exception(f"Storage failed to start: {e}")

    report_generator = get_report_generator()
    logger.info(f"✅ Report Generator: {report_generator.provider_name}")

    if current.use_real_services:
        missing = current.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await get_persistence_service().close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Table ordering for a beach venue: menu, orders, bill closing and "
        "daily reports, on a shared remote database or local files."
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


def get_service() -> PersistenceService:
    """Dependency resolving the current persistence service."""
    return get_persistence_service()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _encode_products(products: list[Product]) -> list[dict[str, Any]]:
    return [p.model_dump(mode="json") for p in products]


def _encode_orders(orders: list[Order]) -> list[dict[str, Any]]:
    return [o.model_dump(mode="json") for o in orders]


def _encode_tables(tables: dict[int, TableSession]) -> dict[str, Any]:
    return {str(table_id): s.model_dump(mode="json") for table_id, s in tables.items()}


def build_bill(table_id: int, orders: list[Order], session: Optional[TableSession]) -> BillResponse:
    """Group the table's open orders per product."""
    lines: dict[str, BillLine] = {}
    for order in orders:
        if order.table_id != table_id or not is_settleable(order.status):
            continue
        for item in order.items:
            key = item.product_id or item.name
            line = lines.get(key)
            if line is None:
                lines[key] = BillLine(
                    product_id=item.product_id,
                    name=item.name,
                    quantity=item.quantity,
                    price=item.price,
                    total=item.line_total,
                )
            else:
                line.quantity += item.quantity
                line.total = round(line.total + item.line_total, 2)

    items = list(lines.values())
    return BillResponse(
        table_id=table_id,
        status=session.status if session else TableStatus.OPEN,
        payment_method=session.payment_method if session else None,
        items=items,
        total=round(sum(line.total for line in items), 2),
    )


def _mode_response() -> DatabaseModeResponse:
    selector = get_backend_selector()
    return DatabaseModeResponse(
        mode=selector.backend.mode,
        using_remote=selector.is_remote,
        project_id=selector.config.project_id if selector.config else None,
    )


async def _stream(
    websocket: WebSocket,
    subscribe: Callable[[Callable[[Any], None]], Awaitable[Any]],
    encode: Callable[[Any], Any],
) -> None:
    """
    Push every snapshot of a subscription to a WebSocket client.

    The subscription lives exactly as long as the connection. A
    subscription that cannot be opened closes the socket with 1011.
    """
    path = websocket.url.path
    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    try:
        subscription = await subscribe(queue.put_nowait)
    except StorageError as e:
        logger.error(f"WebSocket {path} could not subscribe: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    async def pump() -> None:
        while True:
            snapshot = await queue.get()
            await websocket.send_json(encode(snapshot))

    sender = asyncio.create_task(pump())
    try:
        while True:
            # Incoming messages are ignored; receiving detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"WebSocket client left {path}")
    finally:
        sender.cancel()
        subscription.cancel()
        (outcome,) = await asyncio.gather(sender, return_exceptions=True)
        if isinstance(outcome, Exception):
            logger.warning(f"WebSocket {path} stopped sending: {outcome}")


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    current = get_settings()
    return {
        "message": f"🏖️ Welcome to {current.app_name}",
        "version": current.app_version,
        "environment": current.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
        "storage": get_persistence_service().mode,
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(service: PersistenceService = Depends(get_service)) -> HealthResponse:
    """Verify storage and the report generator."""

    storage_status = "healthy"
    try:
        result = await service.run_diagnostics()
        if not result.ok:
            storage_status = f"unhealthy: {result.message}"
    except Exception as e:
        storage_status = f"unhealthy: {str(e)}"
        logger.error(f"Storage health check failed: {e}")

    generator = get_report_generator()
    report_status = "healthy" if await generator.health_check() else "unconfigured"

    overall = "operational" if storage_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        storage_mode=service.mode,
        storage=storage_status,
        report_service=f"{generator.provider_name}: {report_status}",
        timestamp=datetime.now().isoformat(),
    )


# =============================================================================
# PRODUCT ENDPOINTS
# =============================================================================

@app.get("/api/products", response_model=list[Product], tags=["Products"])
async def list_products(service: PersistenceService = Depends(get_service)) -> list[Product]:
    """Current menu with stock."""
    return await service.get_products_once()


@app.post(
    "/api/products",
    response_model=Product,
    responses={404: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
    tags=["Products"],
    summary="Create, Update or Merge a Product",
)
async def save_product(
    product: Product,
    service: PersistenceService = Depends(get_service),
) -> Product:
    """
    Save a product.

    A new product whose name already exists is merged into the existing
    one: stock is added, price and description are replaced.
    """
    logger.info(f"Saving product: {product.name}")
    try:
        return await service.save_product(product)
    except PayloadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.delete("/api/products/{product_id}", tags=["Products"])
async def delete_product(
    product_id: str,
    service: PersistenceService = Depends(get_service),
) -> dict[str, Any]:
    await service.delete_product(product_id)
    return {"success": True, "id": product_id}


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=Order,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place an Order",
)
async def create_order(
    order_data: OrderCreate,
    service: PersistenceService = Depends(get_service),
) -> Order:
    """
    Place an order from a table.

    Prices are frozen from the products sent by the client; stock is
    decremented and the whole order is refused if any product is short.
    """
    logger.info(f"Creating order for table {order_data.table_id}")
    try:
        order = await service.create_order(
            order_data.table_id,
            order_data.items,
            order_data.observation,
        )
    except InsufficientStockError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Order {order.id} created for table {order.table_id} (total {order.total:.2f})")
    return order


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    table_id: Optional[int] = Query(None, ge=1),
    status: Optional[OrderStatus] = Query(None),
    service: PersistenceService = Depends(get_service),
) -> OrderListResponse:
    """All orders, newest first, optionally filtered."""
    orders = await service.get_orders_once()
    if table_id is not None:
        orders = [o for o in orders if o.table_id == table_id]
    if status is not None:
        orders = [o for o in orders if o.status == status]
    orders = sorted(orders, key=lambda o: o.timestamp, reverse=True)

    return OrderListResponse(total=len(orders), orders=orders)


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=Order,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    service: PersistenceService = Depends(get_service),
) -> Order:
    """Move an order to a new status; canceling gives its stock back."""
    try:
        return await service.update_order_status(order_id, update.status)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# TABLE ENDPOINTS
# =============================================================================

@app.get("/api/tables", tags=["Tables"])
async def list_tables(service: PersistenceService = Depends(get_service)) -> dict[str, Any]:
    """Tables with an active session, keyed by table id."""
    return _encode_tables(await service.get_tables_once())


@app.post(
    "/api/tables/{table_id}/close-request",
    response_model=TableSession,
    tags=["Tables"],
)
async def request_table_close(
    table_id: int,
    body: TableCloseRequest,
    service: PersistenceService = Depends(get_service),
) -> TableSession:
    """Customer asks for the bill."""
    logger.info(f"Table {table_id} requested the bill ({body.payment_method})")
    return await service.request_table_close(table_id, body.payment_method)


@app.post(
    "/api/tables/{table_id}/finalize",
    response_model=FinalizeTableResponse,
    tags=["Tables"],
)
async def finalize_table(
    table_id: int,
    service: PersistenceService = Depends(get_service),
) -> FinalizeTableResponse:
    """Staff confirmed payment: close the session and settle the orders."""
    paid = await service.finalize_table(table_id)
    logger.info(f"Table {table_id} finalized, {paid} orders paid")
    return FinalizeTableResponse(success=True, table_id=table_id, orders_paid=paid)


@app.get(
    "/api/tables/{table_id}/bill",
    response_model=BillResponse,
    tags=["Tables"],
)
async def get_bill(
    table_id: int,
    service: PersistenceService = Depends(get_service),
) -> BillResponse:
    """Consumed items of the table's open bill."""
    orders = await service.get_orders_once()
    tables = await service.get_tables_once()
    return build_bill(table_id, orders, tables.get(table_id))


# =============================================================================
# REPORT & ADMIN ENDPOINTS
# =============================================================================

@app.post("/api/reports/daily", response_model=ReportResponse, tags=["Reports"])
async def daily_report(service: PersistenceService = Depends(get_service)) -> ReportResponse:
    """Aggregate every order and ask the report generator for a summary."""
    orders = await service.get_orders_once()
    sales = summarize_sales(orders)

    generator = get_report_generator()
    report = await generator.generate_daily_report(sales)

    return ReportResponse(provider=generator.provider_name, report=report, sales=sales)


@app.get("/api/diagnostics", response_model=DiagnosticsResponse, tags=["Admin"])
async def diagnostics(service: PersistenceService = Depends(get_service)) -> DiagnosticsResponse:
    result = await service.run_diagnostics()
    return DiagnosticsResponse(**result.to_dict())


@app.get("/api/config/database", response_model=DatabaseModeResponse, tags=["Admin"])
async def get_database_config() -> DatabaseModeResponse:
    """Which persistence mode is active."""
    return _mode_response()


@app.put(
    "/api/config/database",
    response_model=DatabaseModeResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Admin"],
)
async def put_database_config(config: DatabaseConfig) -> DatabaseModeResponse:
    """Save a remote database config and switch to it."""
    if not config.is_usable:
        raise HTTPException(status_code=400, detail="database_url is required")

    await save_database_config(config)
    return _mode_response()


@app.delete("/api/config/database", response_model=DatabaseModeResponse, tags=["Admin"])
async def delete_database_config() -> DatabaseModeResponse:
    """Forget the saved config and reload storage."""
    await clear_database_config()
    return _mode_response()


# =============================================================================
# WEBSOCKET STREAMS
# =============================================================================

@app.websocket("/ws/products")
async def products_stream(websocket: WebSocket) -> None:
    await _stream(websocket, get_persistence_service().subscribe_products, _encode_products)


@app.websocket("/ws/orders")
async def orders_stream(websocket: WebSocket) -> None:
    await _stream(websocket, get_persistence_service().subscribe_orders, _encode_orders)


@app.websocket("/ws/tables")
async def tables_stream(websocket: WebSocket) -> None:
    await _stream(websocket, get_persistence_service().subscribe_tables, _encode_tables)


@app.websocket("/ws/tables/{table_id}/session")
async def table_session_stream(websocket: WebSocket, table_id: int) -> None:
    """Tells a table's client when staff confirmed its payment."""
    watcher = TableSessionWatcher(table_id)
    await _stream(
        websocket,
        get_persistence_service().subscribe_tables,
        lambda tables: watcher.observe(tables).model_dump(mode="json"),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Storage failures that no endpoint mapped to a specific status."""
    logger.error(f"Storage error on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Storage Error",
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
            "detail": str(exc) if get_settings().debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
