"""
Mock Report Generator

Builds the daily report locally from the aggregated numbers, without
calling any API. Used in development mode when no Gemini key is set, so
the staff dashboard works offline.

Version: 1.0.0
"""

import logging
from typing import Any

from app.services.report.base import BaseReportGenerator

logger = logging.getLogger(__name__)


def _money(value: float) -> str:
    return f"R$ {value:,.2f}"


class MockReportGenerator(BaseReportGenerator):
    """Deterministic Markdown summary of the sales data."""

    def __init__(self, venue_name: str = "the venue"):
        self.venue_name = venue_name

    @property
    def provider_name(self) -> str:
        return "mock"

    async def generate_daily_report(self, sales_data: dict[str, Any]) -> str:
        order_count = sales_data.get("order_count", 0)
        lines = [f"# Daily report: {self.venue_name}", ""]

        if not order_count:
            lines.append("No sales recorded yet.")
            logger.info("Mock report: no sales")
            return "\n".join(lines)

        lines += [
            "## Revenue",
            f"- Total: **{_money(sales_data.get('total_revenue', 0.0))}**",
            f"- Orders: {order_count}",
            f"- Average ticket: {_money(sales_data.get('average_ticket', 0.0))}",
            "",
        ]

        best = sales_data.get("best_seller")
        if best:
            lines += [
                "## Best seller",
                f"- {best['name']}: {best['quantity']} sold ({_money(best['revenue'])})",
                "",
            ]

        items = sales_data.get("items") or []
        if len(items) > 1:
            slowest = items[-1]
            lines += [
                "## Suggestion",
                f"- Keep **{best['name']}** well stocked; consider promoting "
                f"**{slowest['name']}**, the slowest item today.",
            ]

        logger.info(f"Mock report generated for {order_count} orders")
        return "\n".join(lines)

    async def health_check(self) -> bool:
        return True
