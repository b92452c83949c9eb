"""
Payload Extractor

Splits raw model output into the reasoning text and the JSON payload.

Strategies, first applicable wins:
1. separator - the ###JSON_START### marker the system instruction asks for
2. anchor    - earliest known top-level key opener, closed by the locator
3. fallback  - first '{' to last '}' of the whole text

No '{' at all is a terminal extraction error.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from .errors import ExtractionError, PayloadParseError
from .json_locator import find_json_end

logger = logging.getLogger("payload_extractor")

JSON_SEPARATOR = "###JSON_START###"
THOUGHTS_MARKER = "THOUGHTS:"

_THINKING_BLOCK = re.compile(r"<thinking>([\s\S]*?)</thinking>")
_THINKING_TAGS = re.compile(r"</?thinking>")
_OPEN_FENCE_TAIL = re.compile(r"```(?:json)?\s*$", re.IGNORECASE)

# Top-level key openers that start a workflow payload
WORKFLOW_ANCHORS = (
    re.compile(r'\{\s*"workflow"\s*:'),
    re.compile(r'\{\s*"nodes"\s*:'),
    re.compile(r'\{\s*"requirements"\s*:'),
    re.compile(r'\{\s*"last_node_id"\s*:'),
    re.compile(r'\{\s*"\d+"\s*:\s*\{\s*"(?:class_type|inputs)"\s*:'),
)

# Validator/debugger replies wrap a workflow, so their own keys anchor first
CORRECTION_ANCHORS = (
    re.compile(r'\{\s*"(?:validationLog|correctionLog|correctedWorkflow)"\s*:'),
)

_LEADING_FENCE = re.compile(r"^\s*```(?:json)?[ \t]*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")


@dataclass(frozen=True)
class ExtractionResult:
    """Non-overlapping split of the raw text into payload and reasoning."""
    json_text: str
    reasoning_text: str
    strategy: str


def strip_markers(text: str) -> str:
    """Remove the known marker tokens from reasoning text."""
    text = text.replace(JSON_SEPARATOR, "")
    text = text.replace(THOUGHTS_MARKER, "")
    text = _THINKING_TAGS.sub("", text)
    # A fence opened right before the payload belongs to the payload
    text = _OPEN_FENCE_TAIL.sub("", text.rstrip())
    return text.strip()


def clean_json_text(text: str) -> str:
    """Strip surrounding markdown code fences and whitespace. Idempotent."""
    cleaned = text.strip()
    while True:
        previous = cleaned
        cleaned = _LEADING_FENCE.sub("", cleaned)
        cleaned = _TRAILING_FENCE.sub("", cleaned)
        cleaned = cleaned.strip()
        if cleaned == previous:
            return cleaned


def live_thoughts(text: str) -> str:
    """
    Reasoning view of a partially received response.

    Before the separator shows up everything is reasoning; afterwards only
    the part in front of it is.
    """
    if JSON_SEPARATOR in text:
        text = text.split(JSON_SEPARATOR, 1)[0].strip()
    return text.replace(THOUGHTS_MARKER, "", 1).lstrip()


def _find_anchor(text: str, anchors: Sequence[re.Pattern]) -> Optional[int]:
    """Earliest offset matched by any anchor."""
    offsets = []
    for pattern in anchors:
        match = pattern.search(text)
        if match:
            offsets.append(match.start())
    return min(offsets) if offsets else None


def locate_payload(text: str, anchors: Sequence[re.Pattern] = WORKFLOW_ANCHORS) -> ExtractionResult:
    """Locate the JSON payload in a completed response."""
    # <thinking> blocks carry the reasoning in older prompt conventions
    thinking = None
    match = _THINKING_BLOCK.search(text)
    if match:
        thinking = match.group(1).strip()
        text = text[:match.start()] + text[match.end():]

    def reasoning(prefix: str) -> str:
        return thinking if thinking is not None else strip_markers(prefix)

    if JSON_SEPARATOR in text:
        before, after = text.split(JSON_SEPARATOR, 1)
        payload = clean_json_text(after)
        first = payload.find("{")
        if first == -1:
            raise ExtractionError(
                f"No JSON object found after the {JSON_SEPARATOR} separator."
            )
        # Trailing chatter after the object is dropped; an unbalanced tail is kept whole
        end = find_json_end(payload, first)
        if end is not None:
            payload = payload[first:end + 1]
        return ExtractionResult(payload, reasoning(before), "separator")

    start = _find_anchor(text, anchors)
    if start is not None:
        end = find_json_end(text, start)
        if end is not None:
            return ExtractionResult(
                clean_json_text(text[start:end + 1]), reasoning(text[:start]), "anchor"
            )
        logger.info("Anchored payload is unbalanced (truncated output?), using fallback span")

    first = text.find("{")
    if first == -1:
        raise ExtractionError("No JSON object found in the model response.")
    last = text.rfind("}")
    span = text[first:last + 1] if last > first else text[first:]
    return ExtractionResult(clean_json_text(span), reasoning(text[:first]), "fallback")


def parse_payload_json(json_text: str) -> Any:
    """Parse a located span, keeping the failing text in the error."""
    try:
        return json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error at line {e.lineno} col {e.colno}: {json_text[:200]}")
        raise PayloadParseError(str(e), json_text) from e


def extract_json_object(
    text: str, anchors: Sequence[re.Pattern] = WORKFLOW_ANCHORS
) -> Tuple[Dict[str, Any], ExtractionResult]:
    """Locate and parse the payload; returns (parsed, extraction)."""
    result = locate_payload(text, anchors)
    logger.info(
        f"Payload located via {result.strategy}: "
        f"{len(result.json_text)} chars JSON, {len(result.reasoning_text)} chars reasoning"
    )
    return parse_payload_json(result.json_text), result
