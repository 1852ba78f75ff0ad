"""
Parsing of json objects from the text output of a language model.

Models do not always return bare json, even when asked to. The
strategies below are tried in order until one succeeds:

1. the whole text is json;
2. the content of a ```json fenced block;
3. the content of any fenced block;
4. the first balanced {...} or [...] span of the text.
"""

import json
import re
from collections.abc import Callable
from typing import Any

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```(?:[\w+-]+)?\s*([\s\S]*?)\s*```")

_CLOSING = {"{": "}", "[": "]"}


class JSONParseError(ValueError):
    """No parsing strategy succeeded."""


def _parse_direct(text: str) -> Any:
    return json.loads(text.strip())


def _parse_json_fence(text: str) -> Any:
    match = _JSON_FENCE_RE.search(text)
    if match is None:
        return None
    return json.loads(match.group(1).strip())


def _parse_any_fence(text: str) -> Any:
    match = _ANY_FENCE_RE.search(text)
    if match is None:
        return None
    return json.loads(match.group(1).strip())


def balanced_span(text: str) -> str | None:
    """The first balanced {...} or [...] span of text. Brackets in
    json strings are skipped."""
    start = -1
    for i, ch in enumerate(text):
        if ch in _CLOSING:
            start = i
            break
    if start < 0:
        return None

    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSING:
            stack.append(_CLOSING[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
            if not stack:
                return text[start : i + 1]
    return None


def _parse_balanced(text: str) -> Any:
    span = balanced_span(text)
    if span is None:
        return None
    return json.loads(span)


STRATEGIES: list[Callable[[str], Any]] = [
    _parse_direct,
    _parse_json_fence,
    _parse_any_fence,
    _parse_balanced,
]


def parse_json(text: str) -> Any:
    """Parse json from model output.

    Args:
        text: the model output

    Returns:
        the parsed object (a dict or a list)

    Raises:
        JSONParseError: if all strategies fail
    """
    for strategy in STRATEGIES:
        try:
            result = strategy(text)
        except (ValueError, TypeError):
            continue
        if isinstance(result, (dict, list)):
            return result
    raise JSONParseError(
        f"JSON parse failed. Input preview: {text[:200]}..."
    )
