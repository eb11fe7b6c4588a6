"""Minimal server-sent events parser for streaming HTTP responses."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Optional


@dataclass
class SSEEvent:
    """A dispatched server-sent event."""
    data: str
    event: Optional[str] = None
    id: Optional[str] = None


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Group raw lines into events.

    Follows the event-stream format: ``field: value`` lines, ``:`` comments,
    multi-line ``data`` joined with newlines, dispatch on a blank line. A
    trailing event with no closing blank line is still dispatched.
    """
    event_type: Optional[str] = None
    event_id: Optional[str] = None
    data: list[str] = []

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield SSEEvent(data="\n".join(data), event=event_type, id=event_id)
            event_type, data = None, []
            continue
        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data.append(value)
        elif name == "event":
            event_type = value
        elif name == "id":
            event_id = value

    if data:
        yield SSEEvent(data="\n".join(data), event=event_type, id=event_id)
