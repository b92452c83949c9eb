"""
Brace-balanced JSON locator.

Finds where a JSON object that opens at a given offset syntactically ends.
Braces are only counted outside string literals, so widget values holding
code snippets like ``"}}"`` do not close the object early.
"""

from typing import Optional, Tuple


def find_json_end(text: str, start_index: int) -> Optional[int]:
    """
    Return the index of the ``}`` closing the object opened at start_index.

    Returns None if the text ends before the depth gets back to zero
    (truncated model output).
    """
    depth = 0
    in_string = False
    escape = False

    for i in range(start_index, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i

    return None


def find_first_balanced_object(text: str) -> Optional[Tuple[int, int]]:
    """Return (start, end) of the first balanced {...} span, or None."""
    start = text.find("{")
    if start == -1:
        return None
    end = find_json_end(text, start)
    if end is None:
        return None
    return start, end
