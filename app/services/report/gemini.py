"""
Gemini Report Generator

Sends the aggregated sales to Google Gemini through the google-genai SDK
and returns the model's Markdown summary.

Failure handling:
    - No API key: CONFIG_INCOMPLETE_MESSAGE, no call is made
    - Any error from the SDK or the network: GENERATION_FAILED_MESSAGE

Version: 1.0.0
"""

import logging
from typing import Any, Optional

from google import genai

from app.core.config import get_settings
from app.services.report.base import (
    CONFIG_INCOMPLETE_MESSAGE,
    GENERATION_FAILED_MESSAGE,
    BaseReportGenerator,
    build_report_prompt,
)

logger = logging.getLogger(__name__)


class GeminiReportGenerator(BaseReportGenerator):
    """
    Report generator backed by Gemini.

    Attributes:
        model: Gemini model name
        client: google-genai client, None when no key is configured
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        venue_name: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.venue_name = venue_name or settings.venue_name

        if client is not None:
            self.client = client
        elif self.api_key:
            self.client = genai.Client(api_key=self.api_key)
            logger.info(f"Gemini: Initialized with model {self.model}")
        else:
            self.client = None
            logger.warning("Gemini: API key not configured, reports are disabled")

    @property
    def provider_name(self) -> str:
        return "gemini"

    async def generate_daily_report(self, sales_data: dict[str, Any]) -> str:
        if self.client is None:
            return CONFIG_INCOMPLETE_MESSAGE

        prompt = build_report_prompt(sales_data, self.venue_name)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
            )
        except Exception as e:
            logger.error(f"Gemini: Report generation failed - {e}")
            return GENERATION_FAILED_MESSAGE

        text = response.text
        if not text:
            logger.error("Gemini: Empty response")
            return GENERATION_FAILED_MESSAGE

        logger.info(f"Gemini: Report generated ({len(text)} chars)")
        return text

    async def health_check(self) -> bool:
        """Only checks that a client exists; no API call is spent on it."""
        return self.client is not None
