"""Server-Sent Events framing and parsing."""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional


@dataclass
class SSEMessage:
    event: str
    data: str
    id: Optional[str] = None

    def json(self) -> Any:
        return json.loads(self.data)


def sse_format(event: str, data_obj: Any, event_id: Optional[str] = None) -> str:
    """Frame one SSE message; a message ends with a blank line."""
    msg = ""
    if event_id is not None:
        msg += f"id: {event_id}\n"
    msg += f"event: {event}\n"
    msg += "data: " + json.dumps(data_obj, separators=(",", ":")) + "\n\n"
    return msg


def iter_sse(lines: Iterable[str]) -> Iterator[SSEMessage]:
    """Parse SSE lines into messages.

    Comment lines and unknown fields are ignored; a message without an event
    name is reported as "message".
    """
    event = None
    event_id = None
    data_lines: list[str] = []

    for line in lines:
        line = line.rstrip("\r\n")

        if line == "":
            if data_lines:
                yield SSEMessage(event or "message", "\n".join(data_lines), event_id)
            event = None
            event_id = None
            data_lines = []
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
        elif field == "id":
            event_id = value
