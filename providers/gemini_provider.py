"""
Gemini Provider - Google Gemini through the google-genai SDK.

Requires an API key (settings providers.gemini.api_key or GEMINI_API_KEY).
"""

import logging
import os
from typing import Optional

from google import genai
from google.genai import types

from backend.errors import ConfigurationError, StructuralError

from .base import BaseProvider, ProviderType, call_with_retry

logger = logging.getLogger("providers.gemini")


class GeminiProvider(BaseProvider):
    """Single-shot text generation with an optional JSON response mode."""

    def __init__(self, api_key: str = "", model: str = "gemini-2.5-flash", retries: int = 3):
        super().__init__(ProviderType.GEMINI)
        self.api_key = api_key or os.getenv("GEMINI_API_KEY", "")
        self.model = model
        self.retries = retries
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if not self.api_key:
            raise ConfigurationError(
                "Gemini API key is missing. Set providers.gemini.api_key or GEMINI_API_KEY."
            )
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        contents: str,
        system_instruction: str = "",
        json_mode: bool = True,
    ) -> str:
        """Generate a reply and return its text."""
        client = self._get_client()
        config = types.GenerateContentConfig(
            system_instruction=system_instruction or None,
            response_mime_type="application/json" if json_mode else None,
        )

        logger.info(f"[gemini] model={self.model} json_mode={json_mode}")
        response = await call_with_retry(
            lambda: client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            ),
            retries=self.retries,
            label="gemini",
        )

        text = getattr(response, "text", None)
        if not text:
            raise StructuralError("Gemini returned empty content.")
        return text.strip()
