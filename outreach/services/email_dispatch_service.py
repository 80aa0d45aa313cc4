"""
Send an email to a contact and file the contact under `sent`.
"""

from dataclasses import dataclass

from pydantic import ValidationError

from outreach.infrastructure.events import EventBus, event_bus
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.api.outreach_request import SendEmailRequest
from outreach.models.domain.contact_domain import Contact, MutationResult
from outreach.services.contact_store import ContactStore
from outreach.services.outreach_api import OutreachApiClient
from outreach.services.transport import TransportError

logger = get_logger(__name__)

SENDER_NAME = "Outreach Agent"
GMAIL_NOT_CONNECTED = "Please connect your Gmail account first."


@dataclass(slots=True)
class DispatchResult:
    sent: bool = False
    moved: MutationResult | None = None
    error: str | None = None


class EmailDispatchService:
    def __init__(
        self,
        api: OutreachApiClient,
        contacts: ContactStore,
        bus: EventBus | None = None,
        sender_name: str = SENDER_NAME,
    ):
        self.api = api
        self.contacts = contacts
        self.bus = bus or event_bus
        self.sender_name = sender_name

    async def send_to_contact(
        self, user_id: str | None, contact: Contact | dict, subject: str, body: str
    ) -> DispatchResult:
        """
        Check the Gmail connection, send, then move the contact to `sent`.

        A failed move does not undo the send; the result carries both outcomes.
        """
        result = DispatchResult()
        try:
            record = Contact.coerce(contact)
        except ValidationError as e:
            logger.warning("Invalid contact", user_id=user_id, error=str(e))
            return self._fail(result, "Contact is malformed")

        try:
            status = await self.api.get_gmail_status()
        except TransportError as e:
            logger.error("Gmail status check failed", user_id=user_id, error=e.message)
            return self._fail(result, e.message)

        if not status.get("connected"):
            logger.info("Send blocked, Gmail not connected", user_id=user_id)
            result.error = GMAIL_NOT_CONNECTED
            self.bus.toast(GMAIL_NOT_CONNECTED, type="warning")
            return result

        try:
            request = SendEmailRequest(
                to=record.value or record.email or "",
                subject=subject,
                body=body,
                from_name=self.sender_name,
            )
        except ValidationError as e:
            logger.warning("Invalid email", user_id=user_id, error=str(e))
            return self._fail(result, "Recipient, subject and body are required")

        try:
            await self.api.send_email(request)
        except TransportError as e:
            logger.error("Email send failed", user_id=user_id, to=request.to, error=e.message)
            return self._fail(result, e.message)

        result.sent = True
        result.moved = await self.contacts.move_to_sent(user_id, record)
        if not result.moved.ok:
            logger.warning(
                "Email sent but contact not moved",
                user_id=user_id,
                key=record.key,
                error=result.moved.error,
            )

        logger.info("Email sent", user_id=user_id, key=record.key)
        self.bus.toast("Email sent successfully!", type="success")
        return result

    def _fail(self, result: DispatchResult, message: str) -> DispatchResult:
        result.error = message
        self.bus.toast(f"Failed to send email: {message}", type="error")
        return result
