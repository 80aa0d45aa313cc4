"""
One-time migration of the local fallback into the user document.

Runs on sign-in. It only acts while the document has an empty shortlist and
no templates, so a second run exits early. The local copies are never deleted.
"""

from dataclasses import dataclass, field

from pydantic import ValidationError

from outreach.db.gateway import DocumentStoreError, UserDocumentGateway
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.domain.contact_domain import CONTACT_LISTS, UserContacts
from outreach.models.domain.user_document import CONTACTS_FIELD, TEMPLATES_FIELD
from outreach.services.local_fallback import LocalFallbackStore
from outreach.services.user_document_service import UserDocumentService

logger = get_logger(__name__)


@dataclass(slots=True)
class MigrationReport:
    skipped: bool = False
    contacts: bool = False
    templates: bool = False
    profile: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def migrated_anything(self) -> bool:
        return self.contacts or self.templates or self.profile


class MigrationService:
    def __init__(
        self,
        gateway: UserDocumentGateway,
        local: LocalFallbackStore | None = None,
        documents: UserDocumentService | None = None,
    ):
        self.gateway = gateway
        self.local = local or LocalFallbackStore()
        self.documents = documents or UserDocumentService(gateway)

    async def migrate_local_to_remote(self, user_id: str) -> MigrationReport:
        """Lift myContacts, emailTemplates and userProfile from the local fallback."""
        report = MigrationReport()
        if not user_id:
            report.skipped = True
            return report

        try:
            doc = await self.gateway.get_doc(user_id) or {}
        except DocumentStoreError as e:
            logger.error("Migration read failed", user_id=user_id, error=e.message)
            report.errors.append(e.message)
            return report

        shortlist = (doc.get(CONTACTS_FIELD) or {}).get("shortlist") or []
        templates = doc.get(TEMPLATES_FIELD) or []
        if shortlist or templates:
            logger.info("User data already present, skipping migration", user_id=user_id)
            report.skipped = True
            return report

        await self._migrate_contacts(user_id, report)
        await self._migrate_templates(user_id, report)
        await self._migrate_profile(user_id, report)

        logger.info(
            "Local data migration finished",
            user_id=user_id,
            contacts=report.contacts,
            templates=report.templates,
            profile=report.profile,
            errors=len(report.errors),
        )
        return report

    async def _migrate_contacts(self, user_id: str, report: MigrationReport) -> None:
        if not await self.local.has_contacts():
            return
        contacts: UserContacts = await self.local.get_contacts()
        if not any(contacts.entries(name) for name in CONTACT_LISTS):
            return
        try:
            await self.gateway.update_doc(
                user_id,
                {f"{CONTACTS_FIELD}.{name}": contacts.entries(name) for name in CONTACT_LISTS},
            )
            report.contacts = True
        except DocumentStoreError as e:
            logger.warning("Failed to migrate contacts", user_id=user_id, error=e.message)
            report.errors.append(e.message)

    async def _migrate_templates(self, user_id: str, report: MigrationReport) -> None:
        templates = await self.local.get_templates()
        if not templates:
            return
        try:
            await self.documents.update_user_templates(user_id, templates)
            report.templates = True
        except DocumentStoreError as e:
            logger.warning("Failed to migrate templates", user_id=user_id, error=e.message)
            report.errors.append(e.message)

    async def _migrate_profile(self, user_id: str, report: MigrationReport) -> None:
        profile = await self.local.get_profile()
        if profile is None:
            return
        try:
            await self.documents.update_user_profile(user_id, profile)
            report.profile = True
        except (DocumentStoreError, ValidationError) as e:
            logger.warning("Failed to migrate profile", user_id=user_id, error=str(e))
            report.errors.append(str(e))
