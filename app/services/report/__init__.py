"""
Report Generator Factory

Usage:
    from app.services.report import get_report_generator

    generator = get_report_generator()
    markdown = await generator.generate_daily_report(summarize_sales(orders))

Environment Switching:
    - ENV_MODE=development, no GEMINI_API_KEY → MockReportGenerator
    - otherwise → GeminiReportGenerator (answers with the
      "configuration incomplete" message while the key is missing)

Version: 1.0.0
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.services.report.base import (
    CONFIG_INCOMPLETE_MESSAGE,
    GENERATION_FAILED_MESSAGE,
    BaseReportGenerator,
    build_report_prompt,
)
from app.services.report.gemini import GeminiReportGenerator
from app.services.report.mock import MockReportGenerator

logger = logging.getLogger(__name__)


@lru_cache()
def get_report_generator() -> BaseReportGenerator:
    """
    Get the configured report generator instance.

    The instance is cached (singleton pattern).
    """
    settings = get_settings()

    if settings.is_development and not settings.gemini_api_key:
        logger.info("Report Generator: Using MockReportGenerator (development mode)")
        return MockReportGenerator(venue_name=settings.venue_name)

    logger.info(
        f"Report Generator: Using GeminiReportGenerator ({settings.env_mode.value} mode)"
    )
    return GeminiReportGenerator()


def reset_report_generator() -> None:
    """Clear the cached generator. Useful for testing."""
    get_report_generator.cache_clear()
    logger.debug("Report generator cache cleared")


__all__ = [
    "get_report_generator",
    "reset_report_generator",
    "BaseReportGenerator",
    "MockReportGenerator",
    "GeminiReportGenerator",
    "build_report_prompt",
    "CONFIG_INCOMPLETE_MESSAGE",
    "GENERATION_FAILED_MESSAGE",
]
