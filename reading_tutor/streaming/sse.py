"""Server-Sent-Events encoding of stream events."""

import json
from typing import Any

from .context import AiStreamEvent


def encode_sse(event: str, data: Any) -> str:
    """Encode a record in the Server-Sent-Events format.

    Each record is the event line, one `data:` line per line of the
    payload, and a blank line. Strings are sent as they are, any other
    payload as json.

    Example:
        >>> encode_sse("delta", {"text": "Hi"})
        'event: delta\\ndata: {"text": "Hi"}\\n\\n'
    """
    text: str = (
        data
        if isinstance(data, str)
        else json.dumps(data, ensure_ascii=False)
    )
    lines: list[str] = [f"event: {event}"]
    lines.extend(f"data: {line}" for line in text.split("\n"))
    return "\n".join(lines) + "\n\n"


def encode_sse_event(event: AiStreamEvent) -> str:
    return encode_sse(event.type, event.data)
