"""
ComfyArchitect Providers Package

Transports for the generation pipeline:
- WorkflowBackend: the NDJSON generation backend at localhost:8000
- Ollama: Local Ollama API at localhost:11434 (used by the backend)
- LocalLlm: OpenAI-compatible API at localhost:1234 (validate/debug)
- Gemini: Google Gemini cloud API
"""

from .base import (
    ProviderType,
    ChatMessage,
    GenerationRequest,
    BaseProvider,
    call_with_retry,
    is_transient_error,
)

__all__ = [
    "ProviderType",
    "ChatMessage",
    "GenerationRequest",
    "BaseProvider",
    "call_with_retry",
    "is_transient_error",
]
