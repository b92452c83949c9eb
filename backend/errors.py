"""
Generation Errors

Every failure of a generation call surfaces as one WorkflowGenerationError.
The ``phase`` attribute tells the caller where the pipeline stopped:
network, extraction, parse, structural or config.
"""

from typing import Optional


class WorkflowGenerationError(Exception):
    """Base class for all generation failures."""

    phase = "generation"

    def __init__(self, message: str):
        super().__init__(f"[{self.phase}] {message}")
        self.detail = message


class TransportError(WorkflowGenerationError):
    """The endpoint could not be reached at all."""

    phase = "network"

    def __init__(self, endpoint: str, reason: str = ""):
        message = f"Failed to connect to {endpoint}. Is the server running?"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.endpoint = endpoint


class ProtocolError(WorkflowGenerationError):
    """The endpoint answered with a non-2xx status."""

    phase = "network"

    def __init__(self, status: int, body: str, endpoint: Optional[str] = None):
        where = f" from {endpoint}" if endpoint else ""
        super().__init__(f"HTTP {status}{where}: {body}")
        self.status = status
        self.body = body
        self.endpoint = endpoint


class UpstreamError(WorkflowGenerationError):
    """The generation backend ended its stream with an error record."""

    phase = "network"


class ExtractionError(WorkflowGenerationError):
    """No JSON object could be located in the model output."""

    phase = "extraction"


class PayloadParseError(WorkflowGenerationError):
    """A JSON span was located but does not parse."""

    phase = "parse"

    def __init__(self, reason: str, text: str):
        super().__init__(f"Failed to parse JSON response: {reason}\n--- payload ---\n{text}")
        self.reason = reason
        self.text = text


class StructuralError(WorkflowGenerationError):
    """The parsed payload carries no recoverable workflow."""

    phase = "structural"


class ConfigurationError(WorkflowGenerationError):
    """A required setting (URL, API key, model) is missing or invalid."""

    phase = "config"
