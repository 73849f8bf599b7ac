"""
Sales Aggregation

Turns the raw order list into the JSON payload handed to the report
generator and to the staff dashboard:
- revenue, order count, average ticket
- items ranked by quantity sold
- revenue per table
- order count per status

Canceled orders are excluded from every money figure.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

import pandas as pd

from app.schemas import Order, OrderStatus

logger = logging.getLogger(__name__)

ITEM_COLUMNS = ["order_id", "table_id", "product_id", "name", "price", "quantity", "revenue"]


def _empty_summary(status_counts: dict[str, int]) -> dict[str, Any]:
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "order_count": 0,
        "canceled_count": status_counts.get(OrderStatus.CANCELED.value, 0),
        "total_revenue": 0.0,
        "average_ticket": 0.0,
        "best_seller": None,
        "items": [],
        "revenue_by_table": [],
        "orders_by_status": status_counts,
    }


def summarize_sales(orders: Iterable[Order]) -> dict[str, Any]:
    """
    Aggregate orders into a JSON-serializable sales summary.

    Args:
        orders: Orders from ``get_orders_once()``

    Returns:
        dict with order_count, total_revenue, average_ticket, best_seller,
        items, revenue_by_table and orders_by_status
    """
    orders = list(orders)
    status_counts: dict[str, int] = {}
    for order in orders:
        status_counts[order.status.value] = status_counts.get(order.status.value, 0) + 1

    valid = [o for o in orders if o.status != OrderStatus.CANCELED]
    if not valid:
        return _empty_summary(status_counts)

    orders_df = pd.DataFrame(
        [{"order_id": o.id, "table_id": o.table_id, "total": o.total} for o in valid]
    )
    items_df = pd.DataFrame(
        [
            {
                "order_id": o.id,
                "table_id": o.table_id,
                "product_id": item.product_id,
                "name": item.name,
                "price": item.price,
                "quantity": item.quantity,
                "revenue": item.price * item.quantity,
            }
            for o in valid
            for item in o.items
        ],
        columns=ITEM_COLUMNS,
    )

    total_revenue = round(float(orders_df["total"].sum()), 2)
    average_ticket = round(float(orders_df["total"].mean()), 2)

    ranking = (
        items_df.groupby("name", as_index=False)
        .agg(quantity=("quantity", "sum"), revenue=("revenue", "sum"))
        .sort_values(["quantity", "revenue"], ascending=[False, False])
    )
    items = [
        {
            "name": str(row.name),
            "quantity": int(row.quantity),
            "revenue": round(float(row.revenue), 2),
        }
        for row in ranking.itertuples(index=False)
    ]

    by_table = (
        orders_df.groupby("table_id", as_index=False)
        .agg(orders=("order_id", "count"), revenue=("total", "sum"))
        .sort_values("table_id")
    )
    revenue_by_table = [
        {
            "table_id": int(row.table_id),
            "orders": int(row.orders),
            "revenue": round(float(row.revenue), 2),
        }
        for row in by_table.itertuples(index=False)
    ]

    logger.debug(f"Sales summary: {len(valid)} orders, revenue {total_revenue:.2f}")

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "order_count": len(valid),
        "canceled_count": status_counts.get(OrderStatus.CANCELED.value, 0),
        "total_revenue": total_revenue,
        "average_ticket": average_ticket,
        "best_seller": items[0] if items else None,
        "items": items,
        "revenue_by_table": revenue_by_table,
        "orders_by_status": status_counts,
    }
