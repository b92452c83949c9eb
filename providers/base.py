"""
Base classes and data structures for LLM providers.

Providers only move bytes and strings: they never interpret model output.
Extraction and repair happen in the backend pipeline.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger("providers")

T = TypeVar("T")


class ProviderType(Enum):
    """Supported LLM backends."""
    WORKFLOW_BACKEND = "workflow_backend"
    OLLAMA = "ollama"
    LOCAL_LLM = "local_llm"
    GEMINI = "gemini"


@dataclass
class ChatMessage:
    """A single message in a chat conversation."""
    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass
class GenerationRequest:
    """Body of a streaming generation request."""
    prompt: str
    model: str
    system_prompt: str
    ollama_url: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ==================== Retry ====================

TRANSIENT_STATUSES = (500, 502, 503, 504)
TRANSIENT_MESSAGES = (
    "fetch failed",
    "overloaded",
    "Service Unavailable",
    "Internal Server Error",
)


def is_transient_error(error: BaseException) -> bool:
    """True for errors worth retrying: 5xx gateway/server errors and dropped connections."""
    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "code", None)
    if status in TRANSIENT_STATUSES:
        return True
    if isinstance(error, (ConnectionError, asyncio.TimeoutError)):
        return True
    message = str(error)
    return any(s in message for s in TRANSIENT_MESSAGES)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 3,
    backoff: float = 1.0,
    label: str = "LLM",
) -> T:
    """
    Run operation, retrying transient failures with exponential backoff.

    Only wraps request handshakes. A stream that already produced output is
    never replayed.
    """
    for attempt in range(retries):
        try:
            return await operation()
        except Exception as e:
            if not is_transient_error(e) or attempt >= retries - 1:
                raise
            delay = backoff * (2 ** attempt) + random.random() * 0.5
            logger.warning(
                f"[{label}] Transient error ({e}), retrying in {delay:.2f}s "
                f"(attempt {attempt + 1}/{retries})"
            )
            await asyncio.sleep(delay)
    raise RuntimeError("Max retries exceeded")


class BaseProvider:
    """Common lifecycle for HTTP-backed providers."""

    def __init__(self, provider_type: ProviderType, base_url: str = ""):
        self.provider_type = provider_type
        self.base_url = (base_url or "").rstrip("/")

    def endpoint(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def close(self):
        """Release network resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()


def describe_error(error: Optional[BaseException]) -> str:
    if error is None:
        return ""
    return f"{type(error).__name__}: {error}"
