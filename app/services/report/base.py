"""
Report Generator Abstract Base Class

Defines the interface contract for daily sales report generators.
Both MockReportGenerator and GeminiReportGenerator implement it, so the
staff dashboard gets the same behavior whichever one is active.

Contract:
    - generate_daily_report() always returns a string
    - failures are reported through the fixed fallback messages,
      never by raising

Version: 1.0.0
"""

import json
from abc import ABC, abstractmethod
from typing import Any

CONFIG_INCOMPLETE_MESSAGE = (
    "⚠️ AI configuration incomplete. Check that the GEMINI_API_KEY "
    "environment variable is set."
)
GENERATION_FAILED_MESSAGE = (
    "Error generating the smart report. Check the connection or the API key."
)


def build_report_prompt(sales_data: dict[str, Any], venue_name: str) -> str:
    """Prompt shared by every LLM-backed generator."""
    return (
        "Act as an experienced restaurant manager. Analyze the sales data "
        f"below from {venue_name}, a beach stall, and write an executive summary.\n\n"
        f"Sales data: {json.dumps(sales_data, ensure_ascii=False, default=str)}\n\n"
        "The report must contain:\n"
        "1. A summary of total revenue.\n"
        "2. The best-selling item.\n"
        "3. A suggestion to improve stock or sales based on the data.\n"
        "4. Markdown formatting. Be concise and professional.\n"
    )


class BaseReportGenerator(ABC):
    """
    Abstract base class for report generators.

    Example:
        >>> generator = get_report_generator()
        >>> markdown = await generator.generate_daily_report(summary)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the report provider.

        Returns:
            str: Provider name (e.g., "mock", "gemini")
        """
        pass

    @abstractmethod
    async def generate_daily_report(self, sales_data: dict[str, Any]) -> str:
        """
        Turn aggregated sales into a Markdown report.

        Args:
            sales_data: Output of ``summarize_sales()``

        Returns:
            str: Markdown text, or one of the fallback messages
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Whether the generator can produce real reports."""
        pass
