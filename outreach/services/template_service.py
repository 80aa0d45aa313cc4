"""
Email templates and placeholder rendering.

Templates carry two placeholders, `[Name]` and `[Company]`. Any other
bracketed text such as `[mention: ...]` is an instruction for the writer and
is left untouched.
"""

import re

from outreach.db.gateway import UserDocumentGateway
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.domain.contact_domain import Contact
from outreach.models.domain.user_document import EmailTemplate
from outreach.services.user_document_service import UserDocumentService

logger = get_logger(__name__)

DEFAULT_TEMPLATES = (
    EmailTemplate(
        id=1,
        name="Finance",
        subject="Intro: [Name] at [Company]",
        content=(
            "Hello [Name],\n\n"
            "[mention: education -> project experience -> seeking for communication opportunity]"
        ),
    ),
    EmailTemplate(
        id=2,
        name="Tech",
        subject="Intro: [Name]",
        content=(
            "Hello [Name],\n\n"
            "[mention: working experience -> tech stack -> ask whether the company has position]"
        ),
    ),
)

DEFAULT_TEMPLATE_NAME = "Tech"

_PLACEHOLDER = re.compile(r"\[(Name|Company)\]")

# Industry keywords, first match wins
_INDUSTRY_TEMPLATES = (
    (("finance", "bank"), "Finance"),
    (("tech", "software"), "Tech"),
    (("medicine", "health"), "Medicine"),
)


def default_templates() -> list[EmailTemplate]:
    return [template.model_copy() for template in DEFAULT_TEMPLATES]


def recipient_name(contact: Contact) -> str:
    full = f"{contact.first_name or ''} {contact.last_name or ''}".strip()
    return full or contact.name or "Unknown"


def recipient_company(contact: Contact) -> str:
    return contact.company_name or "Company"


def render_placeholders(text: str, contact: Contact | dict) -> str:
    contact = Contact.lenient(contact)
    values = {"Name": recipient_name(contact), "Company": recipient_company(contact)}
    return _PLACEHOLDER.sub(lambda match: values[match.group(1)], text or "")


def template_name_for_contact(contact: Contact | dict) -> str:
    """Template name suggested by the contact's industry."""
    industry = (Contact.lenient(contact).industry or "").lower()
    for keywords, name in _INDUSTRY_TEMPLATES:
        if any(keyword in industry for keyword in keywords):
            return name
    return DEFAULT_TEMPLATE_NAME


def pick_template(
    templates: list[EmailTemplate],
    contact: Contact | dict,
    requested: str | int | None = None,
) -> EmailTemplate | None:
    """
    Choose the template for a contact.

    An explicit request (or the contact's own `template` field) is matched by
    name or id; otherwise the industry mapping applies; otherwise the first
    template.
    """
    if not templates:
        return None
    contact = Contact.lenient(contact)

    wanted = requested if requested is not None else contact.template
    if wanted is not None and str(wanted).strip():
        wanted = str(wanted).strip()
        for template in templates:
            if template.name == wanted or str(template.id) == wanted:
                return template
        logger.debug("Requested template not found", requested=wanted)

    by_industry = template_name_for_contact(contact)
    for template in templates:
        if template.name == by_industry:
            return template
    return templates[0]


def build_fallback_draft(template: EmailTemplate | None, contact: Contact | dict) -> dict[str, str]:
    """Subject and body used when no generated draft is available."""
    contact = Contact.lenient(contact)
    return {
        "subject": f"Outreach: {recipient_name(contact)} at {recipient_company(contact)}",
        "body": render_placeholders(template.content if template else "", contact),
    }


class TemplateService:
    def __init__(
        self, gateway: UserDocumentGateway, documents: UserDocumentService | None = None
    ):
        self.documents = documents or UserDocumentService(gateway)

    async def load_email_templates(self, user_id: str | None) -> list[EmailTemplate]:
        """The user's saved templates, or the defaults when there are none."""
        templates = await self.documents.get_user_templates(user_id)
        if templates:
            return templates
        return default_templates()

    async def draft_for_contact(
        self, user_id: str | None, contact: Contact | dict, requested: str | int | None = None
    ) -> dict[str, str]:
        templates = await self.load_email_templates(user_id)
        return build_fallback_draft(pick_template(templates, contact, requested), contact)
