# outreach/services/user_document_service.py
"""
User document service: identity fields, profile, templates, behavior log and
Gmail connection state. Contacts, drafts and search history have their own
stores.
"""

import time
from typing import Any, Literal

from outreach.db.gateway import DocumentStoreError, UserDocumentGateway, ensure_user_document
from outreach.infrastructure.observability.logging import get_logger, log_store_write
from outreach.models.domain.contact_domain import Contact
from outreach.models.domain.user_document import (
    BEHAVIOR_FIELD,
    CONTACTS_FIELD,
    CREATED_AT_FIELD,
    EMAIL_DRAFTS_FIELD,
    PROFILE_FIELD,
    SEARCH_HISTORY_FIELD,
    TEMPLATES_FIELD,
    EmailTemplate,
    UserBehavior,
    UserProfileData,
    build_user_skeleton,
    utc_now_iso,
)

logger = get_logger(__name__)

BehaviorType = Literal["search", "accept", "reject"]

BEHAVIOR_SEARCH_LIMIT = 50
BEHAVIOR_CONTACT_LIMIT = 100

GMAIL_CONNECTED_FIELD = "gmailConnected"
GMAIL_EMAIL_FIELD = "gmailEmail"

# Fields carried over from an existing document on sign-in
PRESERVED_FIELDS = (
    CONTACTS_FIELD,
    TEMPLATES_FIELD,
    PROFILE_FIELD,
    BEHAVIOR_FIELD,
    EMAIL_DRAFTS_FIELD,
    SEARCH_HISTORY_FIELD,
    CREATED_AT_FIELD,
)


class UserDocumentService:
    def __init__(self, gateway: UserDocumentGateway):
        self.gateway = gateway

    async def get_user_data(self, user_id: str) -> dict[str, Any] | None:
        """Raw user document, None when it does not exist. Store errors propagate."""
        return await self.gateway.get_doc(user_id)

    async def create_or_update_user_profile(
        self,
        user_id: str,
        email: str = "",
        display_name: str = "",
        photo_url: str = "",
        email_verified: bool = False,
    ) -> dict[str, Any]:
        """
        Merge identity fields into the user document, creating it on first sign-in.

        Existing contacts, templates, profile, behavior, drafts, search history
        and createdAt are kept.

        Raises:
            DocumentStoreError: read or write failed
        """
        start_time = time.time()
        existing = await self.gateway.get_doc(user_id)
        skeleton = build_user_skeleton(
            email=email or "",
            display_name=display_name or "",
            photo_url=photo_url or "",
            email_verified=bool(email_verified),
        )

        if existing:
            for field_name in PRESERVED_FIELDS:
                if existing.get(field_name) is not None:
                    skeleton[field_name] = existing[field_name]

        try:
            await self.gateway.set_doc(user_id, skeleton, merge=True)
        except DocumentStoreError as e:
            log_store_write(
                "create_or_update_user_profile",
                user_id,
                ok=False,
                duration_ms=(time.time() - start_time) * 1000,
                error=e.message,
            )
            raise

        log_store_write(
            "create_or_update_user_profile",
            user_id,
            ok=True,
            duration_ms=(time.time() - start_time) * 1000,
            new_user=existing is None,
        )
        return skeleton

    # Profile

    async def get_user_profile(self, user_id: str | None) -> UserProfileData:
        if not user_id:
            return UserProfileData()
        try:
            doc = await self.gateway.get_doc(user_id)
        except DocumentStoreError as e:
            logger.error("Failed to read profile", user_id=user_id, error=e.message)
            return UserProfileData()

        profile = (doc or {}).get(PROFILE_FIELD)
        return UserProfileData.model_validate(profile) if isinstance(profile, dict) else UserProfileData()

    async def update_user_profile(self, user_id: str, profile: UserProfileData | dict) -> None:
        """Write every profile field with dotted paths; other document fields are untouched."""
        data = (
            profile if isinstance(profile, UserProfileData) else UserProfileData.model_validate(profile)
        ).to_document()
        partial = {
            f"{PROFILE_FIELD}.{name}": data.get(name)
            for name in (
                "name",
                "email",
                "school",
                "industries",
                "bio",
                "resumeName",
                "resumeData",
            )
        }
        await self.gateway.update_doc(user_id, partial)
        logger.info("User profile updated", user_id=user_id)

    # Templates

    async def get_user_templates(self, user_id: str | None) -> list[EmailTemplate]:
        if not user_id:
            return []
        try:
            doc = await self.gateway.get_doc(user_id)
        except DocumentStoreError as e:
            logger.error("Failed to read templates", user_id=user_id, error=e.message)
            return []

        raw = (doc or {}).get(TEMPLATES_FIELD) or []
        return [EmailTemplate.model_validate(t) for t in raw if isinstance(t, dict) and "name" in t and "id" in t]

    async def update_user_templates(
        self, user_id: str, templates: list[EmailTemplate | dict]
    ) -> None:
        data = [
            t.to_document() if isinstance(t, EmailTemplate) else dict(t) for t in templates or []
        ]
        await self.gateway.update_doc(user_id, {TEMPLATES_FIELD: data})
        logger.info("User templates updated", user_id=user_id, count=len(data))

    # Gmail connection

    async def get_gmail_connection_state(self, user_id: str | None) -> dict[str, Any]:
        if not user_id:
            return {"connected": False, "email": ""}
        try:
            doc = await self.gateway.get_doc(user_id) or {}
        except DocumentStoreError as e:
            logger.error("Failed to read Gmail connection state", user_id=user_id, error=e.message)
            return {"connected": False, "email": ""}
        return {
            "connected": bool(doc.get(GMAIL_CONNECTED_FIELD)),
            "email": doc.get(GMAIL_EMAIL_FIELD) or "",
        }

    async def set_gmail_connection_state(
        self, user_id: str, connected: bool, email: str = ""
    ) -> None:
        await ensure_user_document(self.gateway, user_id)
        await self.gateway.update_doc(
            user_id,
            {GMAIL_CONNECTED_FIELD: connected, GMAIL_EMAIL_FIELD: email if connected else ""},
        )
        logger.info("Gmail connection state saved", user_id=user_id, connected=connected)

    # Behavior

    async def record_user_behavior(
        self, user_id: str | None, behavior_type: BehaviorType, data: dict[str, Any] | None = None
    ) -> bool:
        """Append to the behavior log; best-effort, returns False instead of raising."""
        if not user_id:
            return False
        data = data or {}

        try:
            doc = await self.gateway.get_doc(user_id)
            raw = (doc or {}).get(BEHAVIOR_FIELD)
            behavior = UserBehavior.model_validate(raw) if isinstance(raw, dict) else UserBehavior()

            timestamp = utc_now_iso()
            if behavior_type == "search":
                behavior.search_history = [
                    *behavior.search_history[-(BEHAVIOR_SEARCH_LIMIT - 1) :],
                    {"query": data.get("query"), "timestamp": timestamp, "results": data.get("results") or 0},
                ]
            elif behavior_type in ("accept", "reject"):
                contact = data.get("contact")
                if isinstance(contact, Contact):
                    contact = contact.to_document()
                record = {"contact": contact, "timestamp": timestamp}
                if behavior_type == "accept":
                    behavior.accepted_contacts = [
                        *behavior.accepted_contacts[-(BEHAVIOR_CONTACT_LIMIT - 1) :],
                        record,
                    ]
                else:
                    behavior.rejected_contacts = [
                        *behavior.rejected_contacts[-(BEHAVIOR_CONTACT_LIMIT - 1) :],
                        record,
                    ]
            else:
                logger.warning("Unknown behavior type", behavior_type=behavior_type)
                return False

            behavior.last_activity = timestamp
            if doc is None:
                await ensure_user_document(self.gateway, user_id)
            await self.gateway.update_doc(user_id, {BEHAVIOR_FIELD: behavior.to_document()})
            return True

        except DocumentStoreError as e:
            logger.error(
                "Failed to record user behavior",
                user_id=user_id,
                behavior_type=behavior_type,
                error=e.message,
            )
            return False
