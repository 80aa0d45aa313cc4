"""
Chat stream controller.

Drives one chat session against the backend's SSE chat endpoint: keeps the
message list, streams assistant tokens into the trailing assistant message,
attaches tool results to it and exposes cancel / clear / load-session.
"""

import asyncio
import time
import uuid

from pydantic import ValidationError

from outreach.config import settings
from outreach.infrastructure.events import EventBus, event_bus
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.api.outreach_request import ChatStreamRequest
from outreach.models.domain.chat_domain import ChatMessage, StreamStatus, ToolResult
from outreach.models.domain.stream_domain import EventName, StreamEvent
from outreach.services.stream_decoder import iter_events
from outreach.services.transport import (
    EVENT_STREAM_CONTENT_TYPE,
    CancelHandle,
    Transport,
    TransportError,
)

logger = get_logger(__name__)

CHAT_STREAM_PATH = "/api/chat/stream"
CHAT_SESSION_MESSAGES_PATH = "/api/chat/sessions/{session_id}/messages"

STREAM_FAILED_CONTENT = "Failed to get response. Please try again."
LOAD_SESSION_FAILED = "Failed to load chat history"
DEFAULT_ERROR = "An error occurred"


def _message_id(prefix: str = "msg") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class ChatStreamController:
    """
    State holder for one chat conversation.

    Only one stream runs at a time; `send_message` refuses while `is_streaming`.
    """

    def __init__(
        self,
        transport: Transport,
        bus: EventBus | None = None,
        status_clear_delay_s: float | None = None,
    ):
        self.transport = transport
        self.bus = bus or event_bus
        self.status_clear_delay_s = (
            status_clear_delay_s
            if status_clear_delay_s is not None
            else settings.STATUS_CLEAR_DELAY_S
        )

        self.messages: list[ChatMessage] = []
        self.is_streaming = False
        self.session_id: str | None = None
        self.status: StreamStatus | None = None
        self.error: str | None = None
        self._cancel: CancelHandle | None = None
        self._status_timer: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> bool:
        """
        Send a user message and consume the streamed reply.

        Returns:
            bool: False when rejected (blank text or a stream already running)
        """
        if self.is_streaming or not text or not text.strip():
            return False

        self.is_streaming = True
        self.error = None
        self._set_status(None)

        self.messages.append(ChatMessage(id=_message_id(), role="user", content=text))
        self.messages.append(
            ChatMessage(id=_message_id(), role="assistant", content="", is_streaming=True)
        )

        cancel = CancelHandle()
        self._cancel = cancel
        if settings.STREAM_TIMEOUT_S:
            cancel.cancel_after(settings.STREAM_TIMEOUT_S)

        payload = ChatStreamRequest(message=text, session_id=self.session_id).to_payload()
        logger.info("Chat stream started", session_id=self.session_id, length=len(text))

        try:
            response = await self.transport.request(
                CHAT_STREAM_PATH,
                method="POST",
                headers={"Accept": EVENT_STREAM_CONTENT_TYPE},
                body=payload,
                cancel=cancel,
            )
            async with response:
                async for event in iter_events(response.iter_bytes()):
                    if cancel.cancelled:
                        break
                    self._apply_event(event)

        except TransportError as e:
            if e.is_cancelled:
                logger.info("Chat stream cancelled by user", session_id=self.session_id)
            else:
                self._fail_stream(e.message)
        except Exception as e:
            logger.error("Chat stream failed unexpectedly", error=str(e))
            self._fail_stream(str(e) or STREAM_FAILED_CONTENT)

        finally:
            self._finalize_trailing()
            self.is_streaming = False
            self._set_status(None)
            if self._cancel is cancel:
                self._cancel = None
            cancel.release()

        return True

    def cancel_stream(self) -> None:
        """Abort the in-flight stream; silent, never an error."""
        if self._cancel is not None:
            self._cancel.cancel()
        self._finalize_trailing()

    def clear_messages(self) -> None:
        self.messages = []
        self.session_id = None
        self.error = None
        self._set_status(None)

    async def load_session(self, session_id: str) -> bool:
        """Replace local messages with a session's history (messages only, no tool results)."""
        path = CHAT_SESSION_MESSAGES_PATH.format(session_id=session_id)
        try:
            data = await self.transport.request_json(path)
        except TransportError as e:
            logger.error("Failed to load chat session", session_id=session_id, error=e.message)
            self.error = LOAD_SESSION_FAILED
            return False

        if not isinstance(data, dict) or not data.get("success") or data.get("messages") is None:
            logger.warning("Chat session response had no messages", session_id=session_id)
            return False

        loaded = []
        for index, item in enumerate(data["messages"]):
            if not isinstance(item, dict):
                continue
            loaded.append(
                ChatMessage(
                    id=f"loaded-{index}-{int(time.time() * 1000)}",
                    role=item.get("role", "assistant"),
                    content=item.get("content") or "",
                )
            )

        self.messages = loaded
        self.session_id = session_id
        logger.info("Chat session loaded", session_id=session_id, message_count=len(loaded))
        return True

    def snapshot(self) -> list[dict]:
        return [message.to_dict() for message in self.messages]

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _trailing_assistant(self) -> ChatMessage | None:
        if self.messages and self.messages[-1].role == "assistant":
            return self.messages[-1]
        return None

    def _apply_event(self, event: StreamEvent) -> None:
        name = event.event

        if name == EventName.SESSION:
            session_id = event.get("sessionId")
            if session_id:
                self.session_id = session_id

        elif name == EventName.STATUS:
            message = event.get("message")
            if message is None and isinstance(event.data, str):
                message = event.data
            self._set_status(StreamStatus(message or "Processing...", event.get("type") or "processing"))

        elif name == EventName.CONTENT:
            self._append_content(event.get("content"))

        elif name == EventName.TOOL_START:
            arguments = event.get("arguments") or {}
            company = arguments.get("company") if isinstance(arguments, dict) else None
            self._set_status(StreamStatus(f"Searching for contacts at {company or '...'}...", "searching"))

        elif name == EventName.TOOL_RESULT:
            self._apply_tool_result(event)

        elif name == EventName.ERROR:
            error = event.get("error") or DEFAULT_ERROR
            self.error = error
            message = self._trailing_assistant()
            if message is not None:
                message.has_error = True
                message.content = message.content or error

        elif name == EventName.DONE:
            message = self._trailing_assistant()
            if message is not None:
                message.is_streaming = False

        else:
            # Data-only records may still carry content
            self._append_content(event.get("content"))

    def _append_content(self, chunk) -> None:
        if not chunk:
            return
        message = self._trailing_assistant()
        if message is not None:
            message.content += str(chunk)

    def _apply_tool_result(self, event: StreamEvent) -> None:
        if event.get("success"):
            try:
                result = ToolResult.model_validate(event.data)
            except ValidationError as e:
                # Keep the raw payload so the contacts still reach the UI
                logger.warning("Tool result failed validation, attaching raw", error=str(e))
                result = ToolResult.model_construct(**event.data)

            count = event.get("resultCount") or 0
            self._set_status(StreamStatus(f"Found {count} contacts", "success"), auto_clear=True)
            message = self._trailing_assistant()
            if message is not None:
                message.tool_result = result
            logger.info("Tool result received", result_count=count)
        else:
            error = event.get("error") or "Unknown error"
            self._set_status(StreamStatus(f"Search failed: {error}", "error"), auto_clear=True)
            logger.warning("Tool call failed", error=error)

    # ------------------------------------------------------------------
    # Status and finalization
    # ------------------------------------------------------------------

    def _set_status(self, status: StreamStatus | None, auto_clear: bool = False) -> None:
        if self._status_timer is not None:
            self._status_timer.cancel()
            self._status_timer = None

        self.status = status
        if status is not None and auto_clear:
            self._status_timer = asyncio.get_running_loop().call_later(
                self.status_clear_delay_s, self._clear_status_if, status
            )

    def _clear_status_if(self, status: StreamStatus) -> None:
        self._status_timer = None
        if self.status is status:
            self.status = None

    def _fail_stream(self, error: str) -> None:
        logger.error("Chat stream error", session_id=self.session_id, error=error)
        self.error = error or "Failed to connect to server"
        message = self._trailing_assistant()
        if message is not None:
            message.is_streaming = False
            message.has_error = True
            message.content = message.content or STREAM_FAILED_CONTENT
        self.bus.toast(self.error, type="error")

    def _finalize_trailing(self) -> None:
        """Clear the streaming flag even when the server never sent `done`."""
        message = self._trailing_assistant()
        if message is not None:
            message.is_streaming = False
