"""
Local Storage Backend

Fallback persistence used when no remote database is configured.
Collections live as JSON strings in the LocalKeyValueStore:
    - products: list of products
    - orders: list of orders (insertion order)
    - tables: map of table id → session

Behavior:
    - Subscriptions deliver immediately, then every poll interval,
      whether or not anything changed
    - The first products read with nothing stored seeds the starter menu
    - Malformed stored JSON resets the key to an empty value
    - Stock is never allowed below zero

Version: 1.0.0
"""

import json
import logging
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from app.schemas import Category, Order, OrderStatus, Product, TableSession, TableStatus
from app.storage import rules
from app.storage.base import (
    DiagnosticsResult,
    OrderNotFoundError,
    SnapshotCallback,
    StorageBackend,
    Subscription,
    deliver,
)
from app.storage.local_store import LocalKeyValueStore
from app.storage.polling import PollingTimer

logger = logging.getLogger(__name__)


PRODUCTS_KEY = "products"
ORDERS_KEY = "orders"
TABLES_KEY = "tables"

STARTER_CATALOG = [
    Product(id="1", name="Cerveja Gelada 600ml", description="Estupidamente gelada", price=15.00,
            category=Category.BEBIDAS, stock=48, image_url="https://picsum.photos/200/200?random=1"),
    Product(id="2", name="Água de Coco", description="Natural da fruta", price=8.00,
            category=Category.BEBIDAS, stock=20, image_url="https://picsum.photos/200/200?random=2"),
    Product(id="3", name="Isca de Peixe", description="Acompanha molho tártaro", price=45.00,
            category=Category.TIRA_GOSTO, stock=10, image_url="https://picsum.photos/200/200?random=3"),
    Product(id="4", name="Batata Frita", description="Porção generosa", price=25.00,
            category=Category.TIRA_GOSTO, stock=15, image_url="https://picsum.photos/200/200?random=4"),
]

_products_adapter = TypeAdapter(list[Product])
_orders_adapter = TypeAdapter(list[Order])
_tables_adapter = TypeAdapter(dict[int, TableSession])


class LocalBackend(StorageBackend):
    """
    JSON-file backend with polling subscriptions.

    All operations run synchronously between awaits, so concurrent
    coroutines in this process never observe a half-applied mutation.
    """

    def __init__(self, store: LocalKeyValueStore, poll_interval: float = 2.0):
        self.store = store
        self.poll_interval = poll_interval
        self._subscriptions: set[Subscription] = set()

        logger.info(
            f"LocalBackend initialized "
            f"(directory={store.directory}, poll_interval={poll_interval}s)"
        )

    @property
    def mode(self) -> str:
        return "local"

    # =========================================================================
    # RAW JSON ACCESS
    # =========================================================================

    def _read(self, key: str, adapter: TypeAdapter, empty: str) -> Any:
        raw = self.store.get_item(key)
        if raw is None:
            raw = empty
        try:
            return adapter.validate_python(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Malformed local data under '{key}', resetting it: {e}")
            self.store.set_item(key, empty)
            return adapter.validate_python(json.loads(empty))

    def _write(self, key: str, adapter: TypeAdapter, value: Any) -> None:
        self.store.set_item(key, adapter.dump_json(value).decode("utf-8"))

    def _load_products(self, seed: bool = False) -> list[Product]:
        if seed and self.store.get_item(PRODUCTS_KEY) is None:
            logger.info("No local products found, seeding starter catalog")
            self._write(PRODUCTS_KEY, _products_adapter, STARTER_CATALOG)
            return [p.model_copy() for p in STARTER_CATALOG]
        return self._read(PRODUCTS_KEY, _products_adapter, "[]")

    def _load_orders(self) -> list[Order]:
        return self._read(ORDERS_KEY, _orders_adapter, "[]")

    def _load_tables(self) -> dict[int, TableSession]:
        return self._read(TABLES_KEY, _tables_adapter, "{}")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def _poll(
        self,
        name: str,
        load: Callable[[], Any],
        callback: SnapshotCallback,
    ) -> Subscription:
        async def emit() -> None:
            if not subscription.active:
                return
            try:
                snapshot = load()
            except Exception:
                logger.exception(f"Local '{name}' read failed, skipping this cycle")
                return
            try:
                await deliver(callback, snapshot)
            except Exception:
                logger.exception(f"Subscriber of '{name}' raised, skipping this cycle")

        timer = PollingTimer(self.poll_interval, emit, name=name)

        def stop() -> None:
            timer.cancel()
            self._subscriptions.discard(subscription)

        subscription = Subscription(name, on_cancel=stop)
        self._subscriptions.add(subscription)

        await emit()
        if subscription.active:
            timer.start()
        return subscription

    async def subscribe_products(self, callback: SnapshotCallback) -> Subscription:
        return await self._poll(PRODUCTS_KEY, lambda: self._load_products(seed=True), callback)

    async def subscribe_orders(self, callback: SnapshotCallback) -> Subscription:
        return await self._poll(ORDERS_KEY, self._load_orders, callback)

    async def subscribe_tables(self, callback: SnapshotCallback) -> Subscription:
        return await self._poll(TABLES_KEY, self._load_tables, callback)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()
        logger.info("LocalBackend closed")

    # =========================================================================
    # ONE-SHOT READS
    # =========================================================================

    async def get_products_once(self) -> list[Product]:
        return self._load_products(seed=True)

    async def get_orders_once(self) -> list[Order]:
        return self._load_orders()

    async def get_tables_once(self) -> dict[int, TableSession]:
        return self._load_tables()

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def save_product(self, product: Product) -> Product:
        products = self._load_products()

        existing_index = next(
            (i for i, p in enumerate(products) if product.id and p.id == product.id),
            None,
        )
        name_index = next(
            (i for i, p in enumerate(products) if p.name == product.name and p.id != product.id),
            None,
        )

        if existing_index is not None:
            saved = product
            products[existing_index] = saved
            logger.info(f"Product {saved.id} updated ({saved.name})")
        elif name_index is not None:
            saved = rules.merge_product(products[name_index], product)
            products[name_index] = saved
            logger.info(f"Stock of '{saved.name}' increased to {saved.stock}")
        else:
            saved = product if product.id else product.model_copy(update={"id": rules.new_id()})
            products.append(saved)
            logger.info(f"Product {saved.id} created ({saved.name})")

        self._write(PRODUCTS_KEY, _products_adapter, products)
        return saved

    async def delete_product(self, product_id: str) -> None:
        products = [p for p in self._load_products() if p.id != product_id]
        self._write(PRODUCTS_KEY, _products_adapter, products)
        logger.info(f"Product {product_id} deleted")

    async def create_order(self, order: Order) -> Order:
        products = self._load_products()
        catalog = {p.id: p for p in products if p.id}

        rules.check_stock(order.items, catalog)

        for product_id, quantity in rules.demand_by_product(order.items).items():
            product = catalog.get(product_id)
            if product is None:
                logger.warning(f"Order {order.id}: product {product_id} not in catalog, stock untouched")
                continue
            product.stock = max(0, product.stock - quantity)

        self._write(PRODUCTS_KEY, _products_adapter, products)

        orders = self._load_orders()
        orders.append(order)
        self._write(ORDERS_KEY, _orders_adapter, orders)

        logger.info(f"Order {order.id} created for table {order.table_id} (total={order.total:.2f})")
        return order

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        orders = self._load_orders()
        order = next((o for o in orders if o.id == order_id), None)
        if order is None:
            raise OrderNotFoundError(order_id)

        if rules.enters_cancellation(order.status, status):
            products = self._load_products()
            catalog = {p.id: p for p in products if p.id}
            for item in order.items:
                product = catalog.get(item.product_id)
                if product is not None:
                    product.stock += item.quantity
            self._write(PRODUCTS_KEY, _products_adapter, products)
            logger.info(f"Order {order_id} canceled, stock restored")

        order.status = status
        self._write(ORDERS_KEY, _orders_adapter, orders)

        logger.info(f"Order {order_id} → {status.value}")
        return order

    async def request_table_close(self, table_id: int, payment_method: str) -> TableSession:
        tables = self._load_tables()
        session = TableSession(
            table_id=table_id,
            status=TableStatus.CLOSING_REQUESTED,
            payment_method=payment_method,
        )
        tables[table_id] = session
        self._write(TABLES_KEY, _tables_adapter, tables)

        logger.info(f"Table {table_id} requested the bill ({payment_method})")
        return session

    async def finalize_table(self, table_id: int) -> int:
        # Orders first: once the session disappears they must already be PAID
        orders = self._load_orders()
        paid = 0
        for order in orders:
            if order.table_id == table_id and rules.is_settleable(order.status):
                order.status = OrderStatus.PAID
                paid += 1
        self._write(ORDERS_KEY, _orders_adapter, orders)

        tables = self._load_tables()
        tables.pop(table_id, None)
        self._write(TABLES_KEY, _tables_adapter, tables)

        logger.info(f"Table {table_id} finalized ({paid} orders paid)")
        return paid

    async def run_diagnostics(self) -> DiagnosticsResult:
        if self.store.is_persistent():
            return DiagnosticsResult(
                ok=True,
                mode=self.mode,
                message="Local storage is working.",
            )
        return DiagnosticsResult(
            ok=False,
            mode=self.mode,
            message="Local storage looks blocked; data only lives in memory for this process.",
        )
