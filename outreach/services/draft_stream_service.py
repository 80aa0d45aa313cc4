"""
Draft stream controller.

Single-shot email generation over the backend's SSE draft endpoint. Content
tokens accumulate into `draft_content`; a new generation cancels the one in
flight, and cancelling is silent (the partial draft is kept and returned).
"""

import asyncio
from typing import Any

from outreach.config import settings
from outreach.errors import ErrorKind, OutreachError
from outreach.infrastructure.events import EventBus, event_bus
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.api.outreach_request import DraftStreamRequest, DraftTone, RecipientInfo
from outreach.models.domain.chat_domain import StreamStatus
from outreach.models.domain.stream_domain import DraftEventType, StreamEvent
from outreach.services.stream_decoder import iter_events
from outreach.services.transport import (
    EVENT_STREAM_CONTENT_TYPE,
    CancelHandle,
    Transport,
    TransportError,
)

logger = get_logger(__name__)

DRAFT_STREAM_PATH = "/api/emails/stream-draft"


class DraftValidationError(OutreachError):
    """Missing recipient fields; raised before any request is made."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.VALIDATION, recoverable=False)


class DraftGenerationError(OutreachError):
    """The server reported an error event mid-stream."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.GENERATION)


def _coerce_recipient(recipient_info: RecipientInfo | dict[str, Any] | None) -> RecipientInfo:
    if isinstance(recipient_info, RecipientInfo):
        info = recipient_info.model_dump()
    else:
        info = dict(recipient_info or {})

    company = info.get("companyName") or info.get("company_name")
    job_title = info.get("jobTitle") or info.get("job_title")
    if not company or not str(company).strip():
        raise DraftValidationError("Company name is required")
    if not job_title or not str(job_title).strip():
        raise DraftValidationError("Job title is required")

    return RecipientInfo(
        company_name=company,
        job_title=job_title,
        recipient_name=info.get("recipientName") or info.get("recipient_name"),
        recipient_role=info.get("recipientRole") or info.get("recipient_role"),
    )


class DraftStreamController:
    """State holder for the email editor's AI draft."""

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
            else settings.DRAFT_STATUS_CLEAR_DELAY_S
        )

        self.draft_content = ""
        self.is_streaming = False
        self.error: str | None = None
        self.status: StreamStatus | None = None
        self.metadata: dict | None = None
        self._cancel: CancelHandle | None = None
        self._generation = 0
        self._status_timer: asyncio.TimerHandle | None = None

    async def generate_draft(
        self,
        recipient_info: RecipientInfo | dict[str, Any],
        tone: DraftTone = "Formal",
        template: str | None = None,
        job_description: str | None = None,
        append: bool = False,
    ) -> str:
        """
        Stream a draft from the backend.

        Args:
            recipient_info: companyName and jobTitle are required
            tone: Formal, Casual, Confident or Curious
            template: Optional template text to follow
            job_description: Optional job description for context
            append: Keep the current draft and add to it instead of replacing it

        Returns:
            str: The accumulated draft (partial when cancelled)

        Raises:
            DraftValidationError: recipient fields missing
            DraftGenerationError: server sent an error event
            TransportError: network or http-status failure
        """
        try:
            recipient = _coerce_recipient(recipient_info)
        except DraftValidationError as e:
            self.error = e.message
            raise

        self.cancel_stream()

        if append:
            self.error = None
            self._set_status(None)
        else:
            self.reset_state()

        self._generation += 1
        generation = self._generation
        cancel = CancelHandle()
        self._cancel = cancel
        if settings.STREAM_TIMEOUT_S:
            cancel.cancel_after(settings.STREAM_TIMEOUT_S)

        self.is_streaming = True
        self._set_status(StreamStatus("Connecting...", "connecting"))

        payload = DraftStreamRequest(
            recipient_info=recipient,
            tone=tone,
            template=template,
            job_description=job_description,
        ).to_payload()
        accumulated = self.draft_content if append else ""

        logger.info(
            "Draft stream started",
            company=recipient.company_name,
            tone=tone,
            append=append,
            has_template=bool(template),
        )

        try:
            response = await self.transport.request(
                DRAFT_STREAM_PATH,
                method="POST",
                headers={"Accept": EVENT_STREAM_CONTENT_TYPE},
                body=payload,
                cancel=cancel,
            )
            self._set_status(StreamStatus("Generating...", "generating"))

            async with response:
                async for event in iter_events(response.iter_bytes()):
                    if cancel.cancelled:
                        break
                    accumulated = self._apply_event(event, accumulated, append)

            if cancel.cancelled:
                self._on_cancelled(generation, accumulated)
                return accumulated

            self._set_status(StreamStatus("Complete!", "complete"), auto_clear=True)
            logger.info("Draft stream completed", length=len(accumulated))
            return accumulated

        except TransportError as e:
            if e.is_cancelled:
                self._on_cancelled(generation, accumulated)
                return accumulated
            self._on_failed(generation, e.message)
            self.bus.toast(e.message or "Failed to generate email", type="error")
            raise
        except DraftGenerationError as e:
            self._on_failed(generation, e.message)
            raise

        finally:
            cancel.release()
            if self._generation == generation:
                self.is_streaming = False
                self._cancel = None

    def _apply_event(self, event: StreamEvent, accumulated: str, append: bool) -> str:
        if event.is_done or event.is_raw:
            return accumulated

        event_type = event.get("type")

        if event_type == DraftEventType.START:
            self._set_status(StreamStatus(event.get("message") or "Starting...", "starting"))

        elif event_type == DraftEventType.CONTENT:
            chunk = event.get("content")
            if chunk:
                accumulated += chunk
                self.draft_content = accumulated

        elif event_type == DraftEventType.FINISH:
            self._set_status(StreamStatus("Finishing...", "finishing"))

        elif event_type == DraftEventType.COMPLETE:
            self.metadata = event.get("metadata")
            full_content = event.get("fullContent")
            if full_content and not append:
                # Canonical text from the server covers any lost chunks
                accumulated = full_content
                self.draft_content = accumulated

        elif event_type == DraftEventType.ERROR:
            raise DraftGenerationError(event.get("error") or "Generation failed")

        return accumulated

    def _on_cancelled(self, generation: int, accumulated: str) -> None:
        logger.info("Draft stream cancelled", length=len(accumulated))
        if self._generation == generation:
            self._set_status(StreamStatus("Cancelled", "cancelled"))

    def _on_failed(self, generation: int, message: str) -> None:
        logger.error("Draft stream error", error=message)
        if self._generation == generation:
            self.error = message or "Failed to generate email"
            self._set_status(StreamStatus("Error", "error"))

    def cancel_stream(self) -> None:
        """Abort the in-flight generation, if any."""
        if self._cancel is not None:
            self._cancel.cancel()
            self._cancel = None
        self.is_streaming = False
        self._set_status(None)

    def reset_state(self) -> None:
        self.draft_content = ""
        self.error = None
        self.metadata = None
        self._set_status(None)

    def clear_draft(self) -> None:
        self.reset_state()

    def set_content(self, content: str) -> None:
        self.draft_content = content

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
