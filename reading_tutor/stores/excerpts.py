"""
Extraction of the excerpt of a passage shown in a citation.

The excerpt is the part of the passage that mentions most of the
query terms, cut at word boundaries and marked with ellipses where
the passage continues.
"""

import re

WINDOW_SIZE: int = 200
WINDOW_STEP: int = WINDOW_SIZE // 2

_TERM_SPLIT_RE = re.compile(r"[\s,，.。!！?？;；:：]+")
_BOUNDARIES = frozenset(" \n。，！？.,!?")


def tokenize(text: str) -> list[str]:
    """Lowercase terms of text, split on whitespace and punctuation."""
    return [t for t in _TERM_SPLIT_RE.split(text.lower()) if t]


def _best_window(content: str, terms: list[str]) -> int | None:
    """Start of the window containing most terms, or None if no
    window contains any. Ties go to the first window."""
    lowered = content.lower()
    best_position: int | None = None
    best_count = 0
    for position in range(0, len(lowered) - WINDOW_SIZE, WINDOW_STEP):
        window = lowered[position : position + WINDOW_SIZE]
        count = sum(1 for term in terms if term in window)
        if count > best_count:
            best_position, best_count = position, count
    return best_position


def _word_boundary(content: str, position: int, forward: bool) -> int:
    step, limit = (1, len(content)) if forward else (-1, 0)
    pos = position
    while pos != limit:
        if content[pos] in _BOUNDARIES:
            return pos if forward else pos + 1
        pos += step
    return position


def _truncate(content: str, max_length: int) -> str:
    if len(content) <= max_length:
        return content
    end = _word_boundary(content, max_length, forward=False)
    return content[:end] + "..."


def extract_excerpt(
    content: str, query: str, max_length: int = 300
) -> str:
    """Extract the excerpt of content most relevant to query.

    Args:
        content: the passage
        query: the retrieval query
        max_length: approximate length of the excerpt. The cut is
            moved to the nearest word boundary, so the excerpt may be
            slightly longer or shorter

    Returns:
        the excerpt, with '...' where text was cut away
    """
    if not content:
        return ""
    terms = tokenize(query) if query else []
    if not terms:
        return _truncate(content, max_length)

    position = _best_window(content, terms)
    if position is None:
        return _truncate(content, max_length)

    half = max_length // 2
    center = position + WINDOW_STEP
    start = max(0, center - half)
    end = min(len(content), center + half)
    if start > 0:
        start = _word_boundary(content, start, forward=False)
    if end < len(content):
        end = _word_boundary(content, end, forward=True)

    excerpt = content[start:end]
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(content):
        excerpt = excerpt + "..."
    return excerpt
