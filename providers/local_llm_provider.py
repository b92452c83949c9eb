"""
Local LLM Provider - OpenAI-compatible chat completions (LM Studio, llama.cpp
server, Ollama's /v1 endpoint).

Non-streaming: the whole reply is returned as one string.
"""

import asyncio
import logging
from typing import List, Optional

import aiohttp

from backend.errors import ProtocolError, StructuralError, TransportError

from .base import BaseProvider, ChatMessage, ProviderType, call_with_retry, describe_error

logger = logging.getLogger("providers.local_llm")


class LocalLlmProvider(BaseProvider):
    """Client for POST {base_url}/v1/chat/completions."""

    def __init__(self, base_url: str = "http://localhost:1234", model: str = "",
                 retries: int = 3, timeout: float = 300):
        super().__init__(ProviderType.LOCAL_LLM, base_url)
        self.model = model
        self.retries = retries
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"}
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _chat_once(self, url: str, payload: dict) -> str:
        session = await self._get_session()
        try:
            async with session.post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProtocolError(response.status, error_text, endpoint=url)
                data = await response.json(content_type=None)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise TransportError(self.base_url, describe_error(e)) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise StructuralError(f"Malformed chat completion response: {str(data)[:300]}") from e
        if not content:
            raise StructuralError("Local LLM returned empty content.")
        return content

    async def chat(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        temperature: float = 0.2,
    ) -> str:
        """Send a chat completion request and return the reply content."""
        url = self.endpoint("/v1/chat/completions")
        payload = {
            "model": model or self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature,
            "stream": False,
        }
        logger.info(f"Chat completion: {url} model={payload['model']} messages={len(messages)}")
        return await call_with_retry(
            lambda: self._chat_once(url, payload),
            retries=self.retries,
            label="local-llm",
        )
