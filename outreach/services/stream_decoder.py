"""
Server-sent event decoder.

Turns a byte stream into StreamEvent values. Records are separated by a blank
line; a record may span several network chunks and one chunk may carry several
records, so undecoded bytes and the trailing partial record are buffered.
"""

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator, Iterable

from outreach.infrastructure.observability.logging import get_logger
from outreach.models.domain.stream_domain import (
    DEFAULT_EVENT_NAME,
    DONE_SENTINEL,
    EventName,
    StreamEvent,
)

logger = get_logger(__name__)

RECORD_DELIMITER = "\n\n"


def parse_record(record: str) -> StreamEvent | None:
    """
    Parse one SSE record into an event.

    Lines may come in any order. `data` lines are joined with newlines, comment
    lines (leading ':') and unknown fields are ignored.

    Returns:
        StreamEvent, or None when the record carries no data
    """
    event_name = DEFAULT_EVENT_NAME
    data_lines: list[str] = []

    for line in record.split("\n"):
        if not line or line.startswith(":"):
            continue
        field_name, sep, value = line.partition(":")
        if not sep:
            continue
        if value.startswith(" "):
            value = value[1:]

        if field_name == "event":
            event_name = value.strip() or DEFAULT_EVENT_NAME
        elif field_name == "data":
            data_lines.append(value)

    payload = "\n".join(data_lines)
    if not payload.strip():
        return None

    if payload.strip() == DONE_SENTINEL:
        return StreamEvent(event=EventName.DONE, data={}, raw=payload)

    try:
        data = json.loads(payload)
    except ValueError:
        logger.debug("Non-JSON SSE payload", sse_event=event_name, length=len(payload))
        return StreamEvent(event=event_name, data={"raw": payload}, raw=payload, is_raw=True)

    return StreamEvent(event=event_name, data=data, raw=payload)


class SSEDecoder:
    """Incremental decoder; feed chunks in arrival order, then flush once at end of stream."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        text = self._decoder.decode(chunk)
        if not text:
            return []
        self._buffer += text
        # A trailing CR may be the first half of a CRLF split across chunks
        tail = "\r" if self._buffer.endswith("\r") else ""
        head = self._buffer[: len(self._buffer) - len(tail)]
        self._buffer = head.replace("\r\n", "\n").replace("\r", "\n") + tail
        return self._drain()

    def flush(self) -> list[StreamEvent]:
        """Decode whatever remains once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        self._buffer = self._buffer.replace("\r\n", "\n").replace("\r", "\n")
        events = self._drain()

        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            event = parse_record(remainder)
            if event is not None:
                events.append(event)
        return events

    def _drain(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        while RECORD_DELIMITER in self._buffer:
            record, self._buffer = self._buffer.split(RECORD_DELIMITER, 1)
            event = parse_record(record)
            if event is not None:
                events.append(event)
        return events


def format_event(event: StreamEvent) -> bytes:
    """Encode an event with standard framing (`event:` then `data:` then a blank line)."""
    if event.is_done and event.raw == DONE_SENTINEL:
        payload = DONE_SENTINEL
    elif event.is_raw:
        payload = event.data.get("raw", event.raw)
    else:
        payload = json.dumps(event.data)

    lines = []
    if event.event != DEFAULT_EVENT_NAME:
        lines.append(f"event: {event.event}")
    lines.extend(f"data: {line}" for line in payload.split("\n"))
    return ("\n".join(lines) + RECORD_DELIMITER).encode("utf-8")


def encode_events(events: Iterable[StreamEvent]) -> bytes:
    return b"".join(format_event(event) for event in events)


async def iter_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream into events as they complete."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
