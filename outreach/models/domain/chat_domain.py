"""
Chat domain models: messages held by the chat stream controller and the tool
results attached to assistant messages.
"""

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from outreach.models.domain.contact_domain import Contact

ChatRole = Literal["user", "assistant", "system", "tool"]

STATUS_TYPES = frozenset(
    {"thinking", "loading", "processing", "searching", "generating", "success", "warning", "error"}
)


class ToolResult(BaseModel):
    """Output of a server-side tool call (contact search)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    success: bool = False
    result_count: int = Field(default=0, alias="resultCount")
    contacts: list[Contact] = Field(default_factory=list)
    arguments: Any = None
    error: str | None = None


@dataclass(slots=True)
class StreamStatus:
    message: str
    type: str = "processing"


@dataclass(slots=True)
class ChatMessage:
    id: str
    role: ChatRole
    content: str = ""
    is_streaming: bool = False
    has_error: bool = False
    tool_result: ToolResult | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "isStreaming": self.is_streaming,
            "hasError": self.has_error,
        }
        if self.tool_result is not None:
            data["toolResult"] = self.tool_result.model_dump(by_alias=True, warnings=False)
        return data
