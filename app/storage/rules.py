"""
Entity Lifecycle Rules

Pure functions shared by both backends so that order building,
merge-on-name, stock checks and cancellation restocking behave
identically whatever the active storage is.
"""

import time
import uuid
from typing import Iterable, Mapping, Optional

from app.schemas import CartLine, Order, OrderItem, OrderStatus, Product
from app.storage.base import InsufficientStockError

# Remote ids are uuid hex strings; short ids come from seeds or clients.
REMOTE_ID_MIN_LENGTH = 10

# Orders in these states are not touched when a table is finalized
SETTLED_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.CANCELED})


def new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


def order_total(items: Iterable[OrderItem]) -> float:
    return round(sum(item.price * item.quantity for item in items), 2)


def build_order(
    table_id: int,
    lines: Iterable[CartLine],
    observation: Optional[str] = None,
) -> Order:
    """
    Build a PENDING order from cart lines.

    Name and price are copied from the supplied products, so later
    catalog edits never change this order.
    """
    items = [
        OrderItem(
            product_id=line.product.id or "",
            name=line.product.name,
            price=line.product.price,
            quantity=line.quantity,
        )
        for line in lines
    ]
    if not items:
        raise ValueError("An order needs at least one item")

    return Order(
        id=new_id(),
        table_id=table_id,
        status=OrderStatus.PENDING,
        timestamp=now_ms(),
        items=items,
        total=order_total(items),
        observation=observation or "",
    )


def merge_product(existing: Product, incoming: Product) -> Product:
    """
    Fold a newly entered product into the one that already has its name.

    Stock is summed; price and description take the incoming values;
    the image is replaced only when a new one was given.
    """
    return existing.model_copy(update={
        "stock": existing.stock + incoming.stock,
        "price": incoming.price,
        "description": incoming.description,
        "image_url": incoming.image_url or existing.image_url,
    })


def demand_by_product(items: Iterable[OrderItem]) -> dict[str, int]:
    """Total quantity requested per product id, in first-seen order."""
    demand: dict[str, int] = {}
    for item in items:
        if not item.product_id:
            continue
        demand[item.product_id] = demand.get(item.product_id, 0) + item.quantity
    return demand


def check_stock(items: Iterable[OrderItem], catalog: Mapping[str, Product]) -> None:
    """
    Reject an order that would push any known product below zero.

    Products missing from ``catalog`` are not stock-tracked and pass.

    Raises:
        InsufficientStockError: On the first product short of stock
    """
    for product_id, quantity in demand_by_product(items).items():
        product = catalog.get(product_id)
        if product is not None and product.stock < quantity:
            raise InsufficientStockError(product_id, product.name, quantity, product.stock)


def enters_cancellation(current: OrderStatus, new: OrderStatus) -> bool:
    """True only for the transition that must give stock back."""
    return new == OrderStatus.CANCELED and current != OrderStatus.CANCELED


def is_settleable(status: OrderStatus) -> bool:
    """Whether finalizing the table should mark this order PAID."""
    return status not in SETTLED_STATUSES
