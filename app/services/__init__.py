"""
                        Services Module

Business logic that sits on top of the persistence layer.

Services:
    - report: Daily sales report (Mock locally, Gemini otherwise)
    - sales: pandas aggregation of orders
    - session_watch: Payment-confirmed detection for a table
"""

from app.services.sales import summarize_sales
from app.services.session_watch import TableSessionWatcher

__all__ = ["summarize_sales", "TableSessionWatcher"]
