"""
Request payloads for the backend endpoints.
Serialized with `by_alias=True, exclude_none=True` before they go on the wire.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DraftTone = Literal["Formal", "Casual", "Confident", "Curious"]


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatStreamRequest(_Request):
    """Body for the chat stream endpoint."""

    message: str = Field(..., min_length=1)
    session_id: str | None = Field(default=None, alias="sessionId")

    def to_payload(self) -> dict[str, Any]:
        # sessionId is sent even when null so the server opens a new session
        return self.model_dump(by_alias=True)


class RecipientInfo(_Request):
    company_name: str = Field(..., alias="companyName", description="Target company (required)")
    job_title: str = Field(..., alias="jobTitle", description="Target position (required)")
    recipient_name: str | None = Field(default=None, alias="recipientName")
    recipient_role: str | None = Field(default=None, alias="recipientRole")

    def to_wire(self) -> dict[str, Any]:
        return {
            "company_name": self.company_name,
            "job_title": self.job_title,
            "recipient_name": self.recipient_name,
            "recipient_role": self.recipient_role,
        }


class DraftStreamRequest(_Request):
    """Body for the draft stream endpoint."""

    recipient_info: RecipientInfo
    tone: DraftTone = "Formal"
    template: str | None = None
    job_description: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "recipient_info": self.recipient_info.to_wire(),
            "tone": self.tone,
        }
        if self.template:
            payload["template"] = self.template
        if self.job_description:
            payload["job_description"] = self.job_description
        return payload


class ContactSearchRequest(_Request):
    query: str = Field(..., min_length=1, description="Natural language query")
    limit: int = Field(default=10, ge=1, le=100)


class FindEmailRequest(_Request):
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    company: str = Field(..., description="Company domain or name")


class CompanyContactsRequest(_Request):
    company: str = Field(..., min_length=1)
    limit: int = Field(default=10, ge=1, le=100)


class VerifyEmailRequest(_Request):
    email: str = Field(..., min_length=3)


class BatchFindRequest(_Request):
    people: list[dict[str, Any]] = Field(..., min_length=1)


class DraftEmailRequest(_Request):
    recipient_name: str = Field(..., alias="recipientName")
    recipient_email: str = Field(..., alias="recipientEmail")
    recipient_position: str | None = Field(default=None, alias="recipientPosition")
    recipient_company: str | None = Field(default=None, alias="recipientCompany")
    recipient_summary: str | None = Field(default=None, alias="recipientSummary")
    template: str | None = None
    sender_name: str = Field(default="Outreach Agent", alias="senderName")


class SendEmailRequest(_Request):
    to: str = Field(..., min_length=3, description="Recipient email address")
    subject: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, description="Plain text body")
    from_name: str | None = Field(default=None, alias="fromName")


class BatchSendRequest(_Request):
    emails: list[SendEmailRequest] = Field(..., min_length=1)
