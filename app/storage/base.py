"""
Storage Backend Abstract Base Class

Defines the interface contract for both persistence backends.
RemoteBackend (SQL database + Redis notifications) and LocalBackend
(JSON files + polling) must implement these methods, so the
PersistenceService behaves the same regardless of which one is active.

Design Pattern: Strategy Pattern
    - Backend picked once at startup by the BackendSelector
    - Injected into the PersistenceService, no global mode flag
    - Tests exercise each backend through the same interface

Version: 1.0.0
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from app.schemas import Order, OrderStatus, Product, TableSession

logger = logging.getLogger(__name__)


# Subscription callbacks may be plain functions or coroutines
SnapshotCallback = Callable[[Any], Union[None, Awaitable[None]]]


# =============================================================================
# ERRORS
# =============================================================================

class StorageError(Exception):
    """Base class for persistence failures surfaced to callers."""


class PayloadTooLargeError(StorageError):
    """A remote write was rejected because the document is too big."""

    USER_MESSAGE = "Image is too large for the database. Try a smaller picture."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.USER_MESSAGE)


class InsufficientStockError(StorageError):
    """An order asks for more units than a product has in stock."""

    def __init__(self, product_id: str, name: str, requested: int, available: int):
        self.product_id = product_id
        self.name = name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough stock for '{name}': requested {requested}, available {available}"
        )


class OrderNotFoundError(StorageError):
    """No order with the given id."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ProductNotFoundError(StorageError):
    """An update targeted a product that doesn't exist."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


# =============================================================================
# RESULTS & HANDLES
# =============================================================================

@dataclass
class DiagnosticsResult:
    """
    Outcome of a backend self-test.

    Attributes:
        ok: Whether the backend answered correctly
        mode: "remote" or "local"
        message: Human-readable description for staff
    """
    ok: bool
    mode: str
    message: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"ok": self.ok, "mode": self.mode, "message": self.message}


class Subscription:
    """
    Handle returned by every ``subscribe_*`` call.

    Calling ``cancel()`` (or the handle itself) stops all further
    callback invocations and releases the timer or listener behind it.
    Cancelling twice is harmless.
    """

    def __init__(self, name: str, on_cancel: Optional[Callable[[], None]] = None):
        self.name = name
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None
        logger.debug(f"Subscription '{self.name}' cancelled")

    def __call__(self) -> None:
        self.cancel()

    def __repr__(self):
        state = "active" if self._active else "cancelled"
        return f"<Subscription {self.name} ({state})>"


async def deliver(callback: SnapshotCallback, snapshot: Any) -> None:
    """Invoke a sync or async subscription callback."""
    result = callback(snapshot)
    if inspect.isawaitable(result):
        await result


# =============================================================================
# BACKEND INTERFACE
# =============================================================================

class StorageBackend(ABC):
    """
    Abstract base class for persistence backends.

    Every subscription delivers complete snapshots:
        - products: list[Product]
        - orders: list[Order]
        - tables: dict[int, TableSession]
    """

    @property
    @abstractmethod
    def mode(self) -> str:
        """
        Return the backend mode name.

        Returns:
            str: "remote" or "local"
        """
        pass

    async def start(self) -> None:
        """Prepare the backend (create tables, open connections)."""

    async def close(self) -> None:
        """Cancel live subscriptions and release resources."""

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def subscribe_products(self, callback: SnapshotCallback) -> Subscription:
        """Stream the full product list on every change."""
        pass

    @abstractmethod
    async def subscribe_orders(self, callback: SnapshotCallback) -> Subscription:
        """Stream the full order list on every change."""
        pass

    @abstractmethod
    async def subscribe_tables(self, callback: SnapshotCallback) -> Subscription:
        """Stream the table-session map on every change."""
        pass

    # -------------------------------------------------------------------------
    # One-shot reads
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_products_once(self) -> list[Product]:
        pass

    @abstractmethod
    async def get_orders_once(self) -> list[Order]:
        pass

    @abstractmethod
    async def get_tables_once(self) -> dict[int, TableSession]:
        pass

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_product(self, product: Product) -> Product:
        """
        Create, update or merge a product.

        Returns:
            Product: The stored entry (merged target when merge-on-name applied)

        Raises:
            PayloadTooLargeError: Remote write exceeded the size limit
        """
        pass

    @abstractmethod
    async def delete_product(self, product_id: str) -> None:
        """Remove a product. Missing ids are ignored."""
        pass

    @abstractmethod
    async def create_order(self, order: Order) -> Order:
        """
        Persist a fully built order and take its items out of stock.

        Raises:
            InsufficientStockError: Nothing is written in that case
        """
        pass

    @abstractmethod
    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        """
        Change an order's status, restocking once when it gets canceled.

        Raises:
            OrderNotFoundError: Unknown order id
        """
        pass

    @abstractmethod
    async def request_table_close(self, table_id: int, payment_method: str) -> TableSession:
        """Upsert the table's session as CLOSING_REQUESTED."""
        pass

    @abstractmethod
    async def finalize_table(self, table_id: int) -> int:
        """
        Remove the table's session and mark its open orders PAID.

        Returns:
            int: Number of orders moved to PAID
        """
        pass

    @abstractmethod
    async def run_diagnostics(self) -> DiagnosticsResult:
        """Verify the backend can be read and written."""
        pass
