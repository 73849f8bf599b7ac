"""
Remote Storage Backend

Shared persistence for multi-device deployments:
    - PostgreSQL (SQLAlchemy async engine) holds products, orders, tables
    - Redis pub/sub pushes change notifications to every subscriber

Every mutation runs in a single transaction and announces the touched
collections once it is committed. Subscribers always receive complete,
freshly queried snapshots:
    - products ordered by name
    - orders newest first
    - tables as a map keyed by table id

Failure handling:
    - Oversized products raise PayloadTooLargeError (user-facing)
    - Other database failures are logged and raised as StorageError
    - No automatic retry

Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import DataError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.database import create_remote_engine, create_session_maker, init_db
from app.models import OrderRecord, ProductRecord, TableSessionRecord
from app.schemas import DatabaseConfig, Order, OrderStatus, Product, TableSession, TableStatus
from app.storage import rules
from app.storage.base import (
    DiagnosticsResult,
    InsufficientStockError,
    OrderNotFoundError,
    PayloadTooLargeError,
    ProductNotFoundError,
    SnapshotCallback,
    StorageBackend,
    StorageError,
    Subscription,
    deliver,
)
from app.storage.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRODUCTS = "products"
ORDERS = "orders"
TABLES = "tables"


class RemoteBackend(StorageBackend):
    """
    SQL database backend with Redis change notifications.

    Args:
        config: Connection parameters (database_url is required)
        engine: Pre-built engine (tests); built from config otherwise
        redis_client: Pre-built Redis client (tests); built from config otherwise
        default_redis_url: Used when the config has no redis_url
        max_document_bytes: Largest serialized product accepted
        namespace: Prefix of the change channels
        reconnect_delay: First wait before re-subscribing after a Redis outage
        echo: Log SQL statements
    """

    def __init__(
        self,
        config: DatabaseConfig,
        engine: Optional[AsyncEngine] = None,
        redis_client: Optional[aioredis.Redis] = None,
        default_redis_url: str = "redis://localhost:6379/0",
        max_document_bytes: int = 1_048_576,
        namespace: str = "venue",
        reconnect_delay: float = 1.0,
        echo: bool = False,
    ):
        if not config.is_usable:
            raise ValueError("DatabaseConfig.database_url is required for the remote backend")

        self.config = config
        self.max_document_bytes = max_document_bytes
        self._engine = engine or create_remote_engine(config.database_url, echo=echo)
        self._session_maker = create_session_maker(self._engine)

        client = redis_client or aioredis.from_url(
            config.redis_url or default_redis_url,
            decode_responses=True,
        )
        self._feed = ChangeFeed(client, namespace=namespace, reconnect_delay=reconnect_delay)

        logger.info(
            f"RemoteBackend initialized "
            f"(project={config.project_id or 'default'}, dialect={self._engine.dialect.name})"
        )

    @property
    def mode(self) -> str:
        return "remote"

    async def start(self) -> None:
        await init_db(self._engine)
        logger.info("Remote database schema ready")

    async def close(self) -> None:
        await self._feed.close()
        await self._engine.dispose()
        logger.info("RemoteBackend closed")

    # =========================================================================
    # SESSION HELPERS
    # =========================================================================

    @asynccontextmanager
    async def _transaction(
        self,
        action: str,
        size_sensitive: bool = False,
    ) -> AsyncIterator[AsyncSession]:
        """Session inside a transaction, with database errors mapped."""
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except StorageError:
            raise
        except DataError as e:
            if size_sensitive:
                logger.warning(f"Remote {action} rejected as too large: {e}")
                raise PayloadTooLargeError() from e
            logger.exception(f"Remote {action} failed")
            raise StorageError(f"Remote {action} failed: {e}") from e
        except SQLAlchemyError as e:
            logger.exception(f"Remote {action} failed")
            raise StorageError(f"Remote {action} failed: {e}") from e

    async def _read(self, action: str, query: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_maker() as session:
                return await query(session)
        except SQLAlchemyError as e:
            logger.exception(f"Remote {action} failed")
            raise StorageError(f"Remote {action} failed: {e}") from e

    def _check_size(self, product: Product) -> None:
        size = len(product.model_dump_json().encode("utf-8"))
        if size > self.max_document_bytes:
            logger.warning(
                f"Product '{product.name}' is {size} bytes "
                f"(limit {self.max_document_bytes}), rejecting"
            )
            raise PayloadTooLargeError()

    # =========================================================================
    # QUERIES
    # =========================================================================

    @staticmethod
    async def _query_products(session: AsyncSession) -> list[Product]:
        result = await session.execute(select(ProductRecord).order_by(ProductRecord.name))
        return [record.to_schema() for record in result.scalars().all()]

    @staticmethod
    async def _query_orders(session: AsyncSession) -> list[Order]:
        result = await session.execute(select(OrderRecord).order_by(OrderRecord.timestamp.desc()))
        return [record.to_schema() for record in result.scalars().all()]

    @staticmethod
    async def _query_tables(session: AsyncSession) -> dict[int, TableSession]:
        result = await session.execute(select(TableSessionRecord))
        return {record.table_id: record.to_schema() for record in result.scalars().all()}

    async def get_products_once(self) -> list[Product]:
        return await self._read("products read", self._query_products)

    async def get_orders_once(self) -> list[Order]:
        return await self._read("orders read", self._query_orders)

    async def get_tables_once(self) -> dict[int, TableSession]:
        return await self._read("tables read", self._query_tables)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def _watch(
        self,
        collection: str,
        fetch: Callable[[], Awaitable[object]],
        callback: SnapshotCallback,
    ) -> Subscription:
        async def emit() -> None:
            try:
                snapshot = await fetch()
            except Exception:
                logger.exception(f"Remote '{collection}' snapshot failed, skipping this change")
                return
            try:
                await deliver(callback, snapshot)
            except Exception:
                logger.exception(f"Subscriber of '{collection}' raised, skipping this change")

        try:
            return await self._feed.watch(collection, emit)
        except RedisError as e:
            logger.exception(f"Could not subscribe to '{collection}' changes")
            raise StorageError(f"Change feed unavailable: {e}") from e

    async def subscribe_products(self, callback: SnapshotCallback) -> Subscription:
        return await self._watch(PRODUCTS, self.get_products_once, callback)

    async def subscribe_orders(self, callback: SnapshotCallback) -> Subscription:
        return await self._watch(ORDERS, self.get_orders_once, callback)

    async def subscribe_tables(self, callback: SnapshotCallback) -> Subscription:
        return await self._watch(TABLES, self.get_tables_once, callback)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    @staticmethod
    def _apply(record: ProductRecord, product: Product) -> None:
        record.name = product.name
        record.description = product.description
        record.price = product.price
        record.category = product.category
        record.stock = product.stock
        record.image_url = product.image_url

    async def save_product(self, product: Product) -> Product:
        self._check_size(product)

        async with self._transaction("product save", size_sensitive=True) as session:
            if product.id and len(product.id) > rules.REMOTE_ID_MIN_LENGTH:
                record = await session.get(ProductRecord, product.id)
                if record is None:
                    raise ProductNotFoundError(product.id)
                self._apply(record, product)
                saved = product
                logger.info(f"Product {saved.id} updated ({saved.name})")
            else:
                result = await session.execute(
                    select(ProductRecord).where(ProductRecord.name == product.name).limit(1)
                )
                record = result.scalar_one_or_none()
                if record is not None:
                    saved = rules.merge_product(record.to_schema(), product)
                    self._check_size(saved)
                    self._apply(record, saved)
                    logger.info(f"Stock of '{saved.name}' increased to {saved.stock}")
                else:
                    saved = product.model_copy(update={"id": rules.new_id()})
                    record = ProductRecord(id=saved.id)
                    self._apply(record, saved)
                    session.add(record)
                    logger.info(f"Product {saved.id} created ({saved.name})")

        await self._feed.publish(PRODUCTS)
        return saved

    async def delete_product(self, product_id: str) -> None:
        async with self._transaction("product delete") as session:
            await session.execute(delete(ProductRecord).where(ProductRecord.id == product_id))

        logger.info(f"Product {product_id} deleted")
        await self._feed.publish(PRODUCTS)

    async def create_order(self, order: Order) -> Order:
        async with self._transaction("order creation") as session:
            for product_id, quantity in rules.demand_by_product(order.items).items():
                result = await session.execute(
                    update(ProductRecord)
                    .where(ProductRecord.id == product_id, ProductRecord.stock >= quantity)
                    .values(stock=ProductRecord.stock - quantity)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    continue

                record = await session.get(ProductRecord, product_id)
                if record is not None:
                    raise InsufficientStockError(product_id, record.name, quantity, record.stock)
                logger.warning(f"Order {order.id}: product {product_id} not in catalog, stock untouched")

            session.add(OrderRecord(
                id=order.id,
                table_id=order.table_id,
                status=order.status,
                timestamp=order.timestamp,
                items=[item.model_dump(mode="json") for item in order.items],
                total=order.total,
                observation=order.observation,
            ))

        logger.info(f"Order {order.id} created for table {order.table_id} (total={order.total:.2f})")
        await self._feed.publish(PRODUCTS, ORDERS)
        return order

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        async with self._transaction("order status update") as session:
            record = await session.get(OrderRecord, order_id, with_for_update=True)
            if record is None:
                raise OrderNotFoundError(order_id)

            restock = rules.enters_cancellation(record.status, status)
            if restock:
                for item in record.items:
                    await session.execute(
                        update(ProductRecord)
                        .where(ProductRecord.id == item["product_id"])
                        .values(stock=ProductRecord.stock + item["quantity"])
                        .execution_options(synchronize_session=False)
                    )

            record.status = status
            updated = record.to_schema()

        logger.info(f"Order {order_id} → {status.value}")
        if restock:
            logger.info(f"Order {order_id} canceled, stock restored")
            await self._feed.publish(PRODUCTS, ORDERS)
        else:
            await self._feed.publish(ORDERS)
        return updated

    async def request_table_close(self, table_id: int, payment_method: str) -> TableSession:
        async with self._transaction("table close request") as session:
            record = await session.get(TableSessionRecord, table_id)
            if record is None:
                record = TableSessionRecord(table_id=table_id)
                session.add(record)
            record.status = TableStatus.CLOSING_REQUESTED
            record.payment_method = payment_method
            saved = record.to_schema()

        logger.info(f"Table {table_id} requested the bill ({payment_method})")
        await self._feed.publish(TABLES)
        return saved

    async def finalize_table(self, table_id: int) -> int:
        async with self._transaction("table finalization") as session:
            await session.execute(
                delete(TableSessionRecord).where(TableSessionRecord.table_id == table_id)
            )
            result = await session.execute(
                update(OrderRecord)
                .where(
                    OrderRecord.table_id == table_id,
                    OrderRecord.status.not_in(list(rules.SETTLED_STATUSES)),
                )
                .values(status=OrderStatus.PAID)
                .execution_options(synchronize_session=False)
            )
            paid = result.rowcount or 0

        logger.info(f"Table {table_id} finalized ({paid} orders paid)")
        await self._feed.publish(TABLES, ORDERS)
        return paid

    async def run_diagnostics(self) -> DiagnosticsResult:
        try:
            async with self._session_maker() as session:
                await session.execute(select(ProductRecord.id).limit(1))
        except SQLAlchemyError as e:
            logger.error(f"Remote diagnostics: database error - {e}")
            return DiagnosticsResult(ok=False, mode=self.mode, message=f"Database error: {e}")

        if not await self._feed.ping():
            return DiagnosticsResult(
                ok=False,
                mode=self.mode,
                message="Database OK, but the change feed (Redis) is unreachable.",
            )

        return DiagnosticsResult(ok=True, mode=self.mode, message="Remote database connection is OK.")
