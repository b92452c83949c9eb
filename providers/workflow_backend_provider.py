"""
Workflow Backend Provider - the generation backend's NDJSON stream.

POST {base_url}/v1/generate_workflow_stream with a GenerationRequest body;
the response is newline-delimited status/token records.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import aiohttp

from backend.errors import ProtocolError, TransportError
from backend.payload_extractor import parse_payload_json

from .base import BaseProvider, GenerationRequest, ProviderType, call_with_retry, describe_error

logger = logging.getLogger("providers.workflow_backend")

STREAM_PATH = "/v1/generate_workflow_stream"
GENERATE_PATH = "/api/generate-workflow"


class WorkflowBackendProvider(BaseProvider):
    """
    Client for the generation backend.

    open_stream() yields raw byte chunks exactly as they arrive; line
    splitting is the consumer's job.
    """

    def __init__(self, base_url: str = "http://localhost:8000", retries: int = 3, backoff: float = 1.0):
        super().__init__(ProviderType.WORKFLOW_BACKEND, base_url)
        self.retries = retries
        self.backoff = backoff
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, url: str, payload: dict, timeout: aiohttp.ClientTimeout) -> aiohttp.ClientResponse:
        """Send the request and check the status; the body is left unread."""
        session = await self._get_session()
        try:
            response = await session.post(url, json=payload, timeout=timeout)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise TransportError(url, describe_error(e)) from e

        if response.status >= 300:
            try:
                body = await response.text()
            finally:
                response.release()
            raise ProtocolError(response.status, body, endpoint=url)
        return response

    async def open_stream(self, request: GenerationRequest) -> AsyncIterator[bytes]:
        """Stream the raw response body of a generation request."""
        url = self.endpoint(STREAM_PATH)
        logger.info(f"Opening generation stream: {url} (model={request.model})")

        # Only the handshake is retried; once bytes flow a failure is final
        response = await call_with_retry(
            lambda: self._post(url, request.to_dict(), aiohttp.ClientTimeout(total=None, sock_connect=30)),
            retries=self.retries,
            backoff=self.backoff,
            label="backend",
        )
        try:
            async for chunk in response.content.iter_any():
                yield chunk
        except aiohttp.ClientError as e:
            raise TransportError(url, f"stream interrupted: {describe_error(e)}") from e
        finally:
            response.release()

    async def generate_workflow(self, prompt: str) -> dict:
        """Non-streaming generation; the backend returns the bare workflow."""
        url = self.endpoint(GENERATE_PATH)
        response = await call_with_retry(
            lambda: self._post(url, {"prompt": prompt}, aiohttp.ClientTimeout(total=600)),
            retries=self.retries,
            backoff=self.backoff,
            label="backend",
        )
        try:
            body = await response.text()
        finally:
            response.release()
        return parse_payload_json(body)

    async def health_check(self) -> dict:
        session = await self._get_session()
        try:
            async with session.get(
                self.endpoint("/api/health"),
                timeout=aiohttp.ClientTimeout(total=5)
            ) as response:
                if response.status == 200:
                    return await response.json()
                return {"status": "error", "http_status": response.status}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"status": "offline", "error": str(e)}
