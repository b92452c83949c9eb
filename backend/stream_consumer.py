"""
Stream Consumer

Drives one streaming generation to completion:

    READING -> DRAINING -> EXTRACTING -> REPAIRING -> DONE
                     (any state) -> FAILED

The transport is newline-delimited JSON, one record per line:

    {"type": "status", "data": "Loading model..."}
    {"type": "token",  "data": "THOUGHTS: I will use"}

A line that is not such a record is kept as raw model text. Partial lines
are held back until the rest arrives, so chunk boundaries never change the
result. A status record starting with "Error: " is the backend reporting a
failed upstream call and ends the stream.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, List, Optional, Union

from core.signals import Signal

from .errors import UpstreamError, WorkflowGenerationError
from .payload_extractor import JSON_SEPARATOR, extract_json_object, live_thoughts
from .payload_repair import WorkflowFormat, classify_workflow, default_requirements, repair_payload

logger = logging.getLogger("stream_consumer")

NO_THOUGHTS_PLACEHOLDER = "No thoughts recorded."
STREAM_ERROR_PREFIX = "Error: "

Chunk = Union[bytes, str]


# ==================== Stream Events ====================

@dataclass(frozen=True)
class StatusEvent:
    """Operational status message, not model content."""
    text: str


@dataclass(frozen=True)
class TokenEvent:
    """Incremental fragment of model output."""
    text: str


@dataclass(frozen=True)
class UnrecognizedLine:
    """A line that is not a status/token record; kept as content."""
    text: str


StreamEvent = Union[StatusEvent, TokenEvent, UnrecognizedLine]


def decode_line(line: str) -> Optional[StreamEvent]:
    """Decode one complete transport line. Blank lines yield None."""
    line = line.rstrip("\r")
    if not line.strip():
        return None

    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return UnrecognizedLine(line + "\n")

    if isinstance(record, dict):
        kind = record.get("type")
        data = record.get("data")
        if kind == "status" and isinstance(data, str):
            return StatusEvent(data)
        if kind == "token" and isinstance(data, str):
            return TokenEvent(data)

    return UnrecognizedLine(line + "\n")


class LineDecoder:
    """
    Incremental NDJSON line splitter.

    Bytes are decoded incrementally, so a multi-byte character split across
    two chunks is never mangled. Blank lines separate NDJSON records and are
    skipped, unless the first line of the stream showed it is plain text, in
    which case they are paragraph breaks and kept.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.plain_text: Optional[bool] = None

    def feed(self, chunk: Chunk) -> List[StreamEvent]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        events = []
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            event = decode_line(line)
            if event is None:
                if self.plain_text:
                    events.append(UnrecognizedLine("\n"))
                continue
            if self.plain_text is None:
                self.plain_text = isinstance(event, UnrecognizedLine)
            events.append(event)
        return events

    def flush(self) -> List[StreamEvent]:
        """Decode whatever is left once the transport has ended."""
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        event = decode_line(rest)
        if event is None:
            return []
        if isinstance(event, UnrecognizedLine):
            # The final raw fragment had no newline of its own
            event = UnrecognizedLine(event.text[:-1])
        return [event]


async def iter_stream_events(chunks: AsyncIterable[Chunk]) -> AsyncIterator[StreamEvent]:
    """Pull-based view of a transport: yields events in arrival order."""
    decoder = LineDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event


# ==================== Consumer ====================

class ConsumerState(Enum):
    READING = "reading"
    DRAINING = "draining"
    EXTRACTING = "extracting"
    REPAIRING = "repairing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class GenerationResult:
    """Canonical output of one generation call."""
    thoughts: str
    workflow: Dict[str, Any]
    requirements: Dict[str, Any] = field(default_factory=default_requirements)

    @property
    def format(self) -> WorkflowFormat:
        return classify_workflow(self.workflow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thoughts": self.thoughts,
            "workflow": self.workflow,
            "requirements": self.requirements,
        }


def build_result(text: str) -> GenerationResult:
    """Extract and repair a completed response (no streaming state)."""
    parsed, extraction = extract_json_object(text)
    payload = repair_payload(parsed)
    return GenerationResult(
        thoughts=extraction.reasoning_text or NO_THOUGHTS_PLACEHOLDER,
        workflow=payload.workflow,
        requirements=payload.requirements,
    )


class StreamConsumer:
    """
    Consumes one generation stream.

    A consumer belongs to a single call: it owns the accumulated text and is
    not reused. Thought callbacks receive the full reasoning so far on every
    token, never a delta.
    """

    def __init__(
        self,
        on_thoughts: Optional[Callable[[str], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.on_thoughts_update = Signal("thoughts")
        self.on_status_update = Signal("status")
        self.on_thoughts_update.connect(on_thoughts)
        self.on_status_update.connect(on_status)

        self.state = ConsumerState.READING
        self._decoder = LineDecoder()
        self._text = ""
        # Reasoning is final once the separator has arrived
        self._final_thoughts: Optional[str] = None
        self._used = False

    @property
    def text(self) -> str:
        """Raw model text accumulated so far."""
        return self._text

    def _set_state(self, state: ConsumerState):
        logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state

    def _handle(self, event: StreamEvent):
        if isinstance(event, StatusEvent):
            self.on_status_update.emit(event.text)
            if event.text.startswith(STREAM_ERROR_PREFIX):
                raise UpstreamError(event.text[len(STREAM_ERROR_PREFIX):])
            return

        # Only the tail can complete a separator split across tokens
        search_from = max(0, len(self._text) - len(JSON_SEPARATOR) + 1)
        self._text += event.text
        if self._final_thoughts is None and self._text.find(JSON_SEPARATOR, search_from) != -1:
            self._final_thoughts = live_thoughts(self._text)

        if self.on_thoughts_update:
            if self._final_thoughts is not None:
                self.on_thoughts_update.emit(self._final_thoughts)
            else:
                self.on_thoughts_update.emit(live_thoughts(self._text))

    def feed(self, chunk: Chunk):
        """Process one transport chunk synchronously."""
        for event in self._decoder.feed(chunk):
            self._handle(event)

    def finish(self) -> GenerationResult:
        """Drain the line buffer, then extract and repair."""
        self._set_state(ConsumerState.DRAINING)
        for event in self._decoder.flush():
            self._handle(event)

        text = self.text
        self._set_state(ConsumerState.EXTRACTING)
        parsed, extraction = extract_json_object(text)

        self._set_state(ConsumerState.REPAIRING)
        payload = repair_payload(parsed)

        self._set_state(ConsumerState.DONE)
        return GenerationResult(
            thoughts=extraction.reasoning_text or NO_THOUGHTS_PLACEHOLDER,
            workflow=payload.workflow,
            requirements=payload.requirements,
        )

    async def consume(self, chunks: AsyncIterable[Chunk]) -> GenerationResult:
        """Read the transport to its end and return the canonical result."""
        if self._used:
            raise RuntimeError("StreamConsumer instances handle a single stream")
        self._used = True

        try:
            async for chunk in chunks:
                self.feed(chunk)
            result = self.finish()
        except WorkflowGenerationError as e:
            failed_in = self.state
            self._set_state(ConsumerState.FAILED)
            logger.error(f"Generation failed while {failed_in.value}: {e.detail[:300]}")
            raise
        except Exception:
            self._set_state(ConsumerState.FAILED)
            raise

        logger.info(
            f"Stream complete: {len(self.text)} chars, "
            f"{result.format.value} workflow, thoughts={len(result.thoughts)} chars"
        )
        return result
