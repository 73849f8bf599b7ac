"""
Persistence Service

The only component allowed to write products, orders and table sessions.
Callers (HTTP routes, WebSocket streams, scripts) go through it and never
touch a backend directly.

The service builds what both backends share (order snapshots and
totals, input validation) and delegates storage to the injected backend:

    service = PersistenceService(selector.backend)
    await service.start()
    sub = await service.subscribe_orders(on_orders)
    order = await service.create_order(4, [CartLine(product=suco, quantity=3)])
    sub.cancel()

Consistency limits: concurrent writers on different processes race by
last-write-wins (two staff editing the same product, two finalizations
of the same table). There is no conflict detection.

Version: 1.0.0
"""

import logging
from typing import Iterable, Optional

from app.schemas import CartLine, Order, OrderStatus, Product, TableSession
from app.storage import rules
from app.storage.base import DiagnosticsResult, SnapshotCallback, StorageBackend, Subscription

logger = logging.getLogger(__name__)


class PersistenceService:
    """Backend-agnostic subscriptions and mutations."""

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    @property
    def mode(self) -> str:
        return self.backend.mode

    @property
    def is_remote(self) -> bool:
        return self.backend.mode == "remote"

    async def start(self) -> None:
        await self.backend.start()

    async def close(self) -> None:
        await self.backend.close()

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def subscribe_products(self, callback: SnapshotCallback) -> Subscription:
        """Receive ``list[Product]`` now and on every change."""
        return await self.backend.subscribe_products(callback)

    async def subscribe_orders(self, callback: SnapshotCallback) -> Subscription:
        """Receive ``list[Order]`` now and on every change."""
        return await self.backend.subscribe_orders(callback)

    async def subscribe_tables(self, callback: SnapshotCallback) -> Subscription:
        """Receive ``dict[int, TableSession]`` now and on every change."""
        return await self.backend.subscribe_tables(callback)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_products_once(self) -> list[Product]:
        return await self.backend.get_products_once()

    async def get_orders_once(self) -> list[Order]:
        """One-shot read of every order, for reports."""
        return await self.backend.get_orders_once()

    async def get_tables_once(self) -> dict[int, TableSession]:
        return await self.backend.get_tables_once()

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def save_product(self, product: Product) -> Product:
        """
        Create or update a product, merging into a same-named one.

        Raises:
            PayloadTooLargeError: The remote database refused the size
            ProductNotFoundError: Remote update of an unknown id
        """
        return await self.backend.save_product(product)

    async def delete_product(self, product_id: str) -> None:
        """Remove a product; unknown ids are ignored."""
        await self.backend.delete_product(product_id)

    async def create_order(
        self,
        table_id: int,
        items: Iterable[CartLine],
        observation: Optional[str] = None,
    ) -> Order:
        """
        Place a PENDING order and take its items out of stock.

        Args:
            table_id: Table the order comes from
            items: Products (with the price the customer saw) and quantities
            observation: Free text for the kitchen

        Raises:
            ValueError: No items
            InsufficientStockError: A product doesn't have enough stock;
                nothing is written
        """
        order = rules.build_order(table_id, list(items), observation)
        return await self.backend.create_order(order)

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        """
        Move an order to any status.

        Entering CANCELED gives every line back to stock, once.

        Raises:
            OrderNotFoundError: Unknown order id
        """
        return await self.backend.update_order_status(order_id, status)

    async def request_table_close(self, table_id: int, payment_method: str) -> TableSession:
        """Customer asks for the bill with the chosen payment method."""
        return await self.backend.request_table_close(table_id, payment_method)

    async def finalize_table(self, table_id: int) -> int:
        """
        Staff confirmed payment: clear the session, mark open orders PAID.

        Returns:
            int: Number of orders moved to PAID
        """
        return await self.backend.finalize_table(table_id)

    async def run_diagnostics(self) -> DiagnosticsResult:
        result = await self.backend.run_diagnostics()
        log = logger.info if result.ok else logger.warning
        log(f"Storage diagnostics ({result.mode}): {result.message}")
        return result
