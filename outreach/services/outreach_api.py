"""
JSON operations of the outreach backend: contact discovery, email drafting
and sending, Gmail connection and chat sessions.

Every method returns the decoded response body (the `data` envelope is
unwrapped for the email endpoints) and raises TransportError on failure.
"""

from typing import Any

from outreach.infrastructure.observability.logging import get_logger
from outreach.models.api.outreach_request import (
    BatchFindRequest,
    BatchSendRequest,
    CompanyContactsRequest,
    ContactSearchRequest,
    DraftEmailRequest,
    FindEmailRequest,
    SendEmailRequest,
    VerifyEmailRequest,
)
from outreach.services.transport import CancelHandle, Transport

logger = get_logger(__name__)

CONTACTS_PREFIX = "/api/contacts"
EMAILS_PREFIX = "/api/emails"
GMAIL_PREFIX = "/api/auth/gmail"
JOBS_COMPANY_CONTACTS_PATH = "/api/jobs/company-contacts"
CHAT_SESSIONS_PATH = "/api/chat/sessions"

DEFAULT_COMPANY_CONTACTS_LIMIT = 4


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class OutreachApiClient:
    def __init__(self, transport: Transport):
        self.transport = transport

    async def _post(self, path: str, body: dict[str, Any], cancel: CancelHandle | None = None) -> Any:
        return await self.transport.request_json(path, method="POST", body=body, cancel=cancel)

    # Contacts

    async def search_contacts(self, query: str, limit: int = 10) -> Any:
        request = ContactSearchRequest(query=query, limit=limit)
        return await self._post(f"{CONTACTS_PREFIX}/search", request.to_payload())

    async def find_email(self, first_name: str, last_name: str, company: str) -> Any:
        request = FindEmailRequest(first_name=first_name, last_name=last_name, company=company)
        return await self._post(f"{CONTACTS_PREFIX}/find-email", request.to_payload())

    async def find_company_contacts(self, company: str, limit: int = 10) -> Any:
        request = CompanyContactsRequest(company=company, limit=limit)
        return await self._post(f"{CONTACTS_PREFIX}/company", request.to_payload())

    async def advanced_search(
        self,
        company: str,
        role: str | None = None,
        location: str | None = None,
        limit: int = 10,
    ) -> Any:
        body = {"company": company, "role": role, "location": location, "limit": limit}
        return await self._post(
            f"{CONTACTS_PREFIX}/advanced-search",
            {key: value for key, value in body.items() if value is not None},
        )

    async def verify_email(self, email: str) -> Any:
        request = VerifyEmailRequest(email=email)
        return await self._post(f"{CONTACTS_PREFIX}/verify-email", request.to_payload())

    async def batch_find(self, people: list[dict[str, Any]]) -> Any:
        request = BatchFindRequest(people=people)
        return await self._post(f"{CONTACTS_PREFIX}/batch-find", request.to_payload())

    async def get_company_contacts(
        self, company: str, limit: int = DEFAULT_COMPANY_CONTACTS_LIMIT
    ) -> Any:
        """Contacts for a job listing's company (query-string endpoint)."""
        return await self.transport.request_json(
            JOBS_COMPANY_CONTACTS_PATH,
            params={"company": company, "limit": limit},
        )

    # Emails

    async def draft_email(self, request: DraftEmailRequest | dict[str, Any]) -> Any:
        if not isinstance(request, DraftEmailRequest):
            request = DraftEmailRequest.model_validate(request)
        return _unwrap(await self._post(f"{EMAILS_PREFIX}/draft", request.to_payload()))

    async def send_email(self, request: SendEmailRequest | dict[str, Any]) -> Any:
        if not isinstance(request, SendEmailRequest):
            request = SendEmailRequest.model_validate(request)
        logger.info("Sending email", to=request.to, has_body=bool(request.body))
        return _unwrap(await self._post(f"{EMAILS_PREFIX}/send", request.to_payload()))

    async def batch_send_emails(self, emails: list[SendEmailRequest | dict[str, Any]]) -> Any:
        request = BatchSendRequest(
            emails=[
                e if isinstance(e, SendEmailRequest) else SendEmailRequest.model_validate(e)
                for e in emails
            ]
        )
        return _unwrap(await self._post(f"{EMAILS_PREFIX}/batch-send", request.to_payload()))

    # Gmail connection

    async def connect_gmail(self) -> Any:
        """OAuth URL for connecting the user's Gmail account."""
        return await self.transport.request_json(f"{GMAIL_PREFIX}/connect")

    async def get_gmail_status(self) -> dict[str, Any]:
        payload = await self.transport.request_json(f"{GMAIL_PREFIX}/status")
        payload = payload if isinstance(payload, dict) else {}
        return {"connected": bool(payload.get("connected")), "email": payload.get("email") or ""}

    async def disconnect_gmail(self) -> Any:
        return await self.transport.request_json(f"{GMAIL_PREFIX}/disconnect", method="POST")

    # Chat sessions

    async def list_chat_sessions(self) -> list[dict[str, Any]]:
        payload = await self.transport.request_json(CHAT_SESSIONS_PATH)
        if isinstance(payload, dict):
            payload = payload.get("sessions") or []
        return [s for s in payload or [] if isinstance(s, dict)]
