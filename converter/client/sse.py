# FILE: converter/client/sse.py
"""
Incremental Server-Sent Events parser.

Network chunks split frames anywhere, including in the middle of a line, so
the parser keeps the unfinished tail in SSEParserState between calls:

    state = SSEParserState()
    for chunk in chunks:
        for event in parse_sse_chunk(chunk, state):
            ...

Lines starting with ':' are comments (keep-alives) and are ignored. When a
frame has no `event:` line the type is taken from the JSON payload's "type".
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class SSEEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SSEParserState:
    buffer: str = ""
    event_type: Optional[str] = None
    data_lines: List[str] = field(default_factory=list)


def _dispatch(state: SSEParserState) -> Optional[SSEEvent]:
    event_type, data_lines = state.event_type, state.data_lines
    state.event_type = None
    state.data_lines = []
    if not data_lines:
        return None

    raw = "\n".join(data_lines)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("[sse] Dropping frame with non-JSON data: %r", raw[:200])
        return None
    if not isinstance(data, dict):
        data = {"value": data}

    event_type = event_type or data.get("type")
    if not event_type:
        logger.warning("[sse] Dropping frame without a type")
        return None
    data.pop("type", None)
    return SSEEvent(type=event_type, data=data)


def parse_sse_chunk(chunk: str, state: SSEParserState) -> List[SSEEvent]:
    """Feed one chunk; return the events completed by it."""
    text = state.buffer + chunk
    # a trailing CR may be the first half of a CRLF split across chunks
    held = ""
    if text.endswith("\r"):
        text, held = text[:-1], "\r"
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    *lines, tail = text.split("\n")
    state.buffer = tail + held

    events: List[SSEEvent] = []
    for line in lines:
        if line == "":
            event = _dispatch(state)
            if event is not None:
                events.append(event)
        elif line.startswith(":"):
            continue
        else:
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                state.event_type = value
            elif name == "data":
                state.data_lines.append(value)
    return events
