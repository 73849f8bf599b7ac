"""
                Table Ordering System

Point-of-sale and table-ordering backend for a single venue:
customers order from a per-table link and ask for the bill,
staff manage stock, follow live orders and close tables.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
