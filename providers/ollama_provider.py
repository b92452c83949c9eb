"""
Ollama Provider - Local Ollama API at localhost:11434.

Used by the generation backend to stream raw model tokens, which the
backend re-emits as NDJSON token records.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from backend.errors import ProtocolError, TransportError

from .base import BaseProvider, ProviderType, describe_error

logger = logging.getLogger("providers.ollama")


class OllamaProvider(BaseProvider):
    """
    Provider for the Ollama generate API.

    Ollama loads models on first request and keeps them warm for
    keep_alive afterwards.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        keep_alive: str = "5m",
        temperature: float = 0.2,
    ):
        super().__init__(ProviderType.OLLAMA, base_url)
        self.keep_alive = keep_alive
        self.temperature = temperature
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _resolve(self, base_url: Optional[str], path: str) -> str:
        base = (base_url or self.base_url).rstrip("/")
        return f"{base}{path}"

    async def generate_stream(
        self,
        model: str,
        prompt: str,
        system: str = "",
        base_url: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Stream tokens from /api/generate.

        base_url overrides the configured server for this call (requests may
        name their own Ollama instance).
        """
        url = self._resolve(base_url, "/api/generate")
        session = await self._get_session()

        payload = {
            "model": model,
            "prompt": prompt,
            "stream": True,
            "keep_alive": self.keep_alive,
            "options": {"temperature": self.temperature},
        }
        if system:
            payload["system"] = system

        try:
            async with session.post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=30)
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ProtocolError(response.status, error_text, endpoint=url)

                async for line in response.content:
                    line = line.decode("utf-8", errors="replace").strip()
                    if not line:
                        continue

                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"[Ollama] Skipping malformed line: {line[:100]}")
                        continue

                    if data.get("error"):
                        raise ProtocolError(500, str(data["error"]), endpoint=url)

                    token = data.get("response", "")
                    if token:
                        yield token

                    if data.get("done"):
                        logger.info(
                            f"[Ollama] {model} done: "
                            f"{data.get('eval_count', 0)} tokens in "
                            f"{data.get('total_duration', 0) / 1e9:.1f}s"
                        )
                        break

        except aiohttp.ClientError as e:
            raise TransportError(url, describe_error(e)) from e
        except asyncio.TimeoutError as e:
            raise TransportError(url, "request timed out") from e

    async def generate(self, model: str, prompt: str, system: str = "",
                       base_url: Optional[str] = None) -> str:
        """Collect a full response."""
        parts = []
        async for token in self.generate_stream(model, prompt, system, base_url):
            parts.append(token)
        return "".join(parts)

    async def health_check(self, base_url: Optional[str] = None) -> Dict[str, Any]:
        """Check if Ollama is running."""
        session = await self._get_session()

        try:
            async with session.get(
                self._resolve(base_url, "/api/tags"),
                timeout=aiohttp.ClientTimeout(total=5)
            ) as response:
                if response.status == 200:
                    data = await response.json()
                    return {
                        "status": "online",
                        "model_count": len(data.get("models", [])),
                    }
                return {"status": "error", "http_status": response.status}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"status": "offline", "error": str(e)}
