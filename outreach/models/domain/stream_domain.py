"""
Stream event model produced by the SSE decoder.
"""

from dataclasses import dataclass, field
from typing import Any

DEFAULT_EVENT_NAME = "message"
DONE_SENTINEL = "[DONE]"


class EventName:
    """Event names emitted by the chat endpoint."""

    SESSION = "session"
    STATUS = "status"
    CONTENT = "content"
    TOOL_START = "tool_start"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    DONE = "done"
    MESSAGE = DEFAULT_EVENT_NAME


class DraftEventType:
    """`type` values carried in draft endpoint payloads."""

    START = "start"
    CONTENT = "content"
    FINISH = "finish"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """
    One decoded SSE record.

    `data` is the parsed JSON payload. When the payload is not JSON it is
    `{"raw": <text>}` and `is_raw` is set.
    """

    event: str
    data: Any
    raw: str = field(default="", compare=False)
    is_raw: bool = field(default=False, compare=False)

    @property
    def is_done(self) -> bool:
        return self.event == EventName.DONE

    def get(self, key: str, default: Any = None) -> Any:
        """Field lookup that tolerates non-dict payloads."""
        if isinstance(self.data, dict):
            return self.data.get(key, default)
        return default
