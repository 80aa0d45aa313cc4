"""
Draft Store.

Per-contact email drafts in the `emailDrafts` map of the user document, keyed
by normalized contact email. Email keys contain dots, so the whole map is
written at once rather than through a dotted path.
"""

import time

from pydantic import ValidationError

from outreach.db.gateway import DocumentStoreError, UserDocumentGateway, ensure_user_document
from outreach.infrastructure.observability.logging import get_logger, log_store_write
from outreach.models.domain.contact_domain import normalize_email_key
from outreach.models.domain.user_document import EMAIL_DRAFTS_FIELD, EmailDraft
from outreach.services.local_fallback import LocalFallbackStore

logger = get_logger(__name__)


def _parse_drafts(raw: dict | None) -> dict[str, EmailDraft]:
    drafts: dict[str, EmailDraft] = {}
    for key, value in (raw or {}).items():
        if not isinstance(value, dict):
            continue
        try:
            drafts[key] = EmailDraft.model_validate(value)
        except ValidationError as e:
            logger.warning("Skipping malformed draft", key=key, error=str(e))
    return drafts


class DraftStore:
    def __init__(self, gateway: UserDocumentGateway, local: LocalFallbackStore | None = None):
        self.gateway = gateway
        self.local = local or LocalFallbackStore()

    async def get_drafts(self, user_id: str | None) -> dict[str, EmailDraft]:
        """Whole draft map; empty when unreadable."""
        if not user_id:
            return _parse_drafts(await self.local.get_drafts())

        try:
            doc = await self.gateway.get_doc(user_id)
        except DocumentStoreError as e:
            logger.error("Failed to read drafts", user_id=user_id, error=e.message)
            return {}
        return _parse_drafts((doc or {}).get(EMAIL_DRAFTS_FIELD))

    async def get_draft(self, user_id: str | None, email_key: str) -> EmailDraft | None:
        drafts = await self.get_drafts(user_id)
        return drafts.get(normalize_email_key(email_key))

    async def save_draft(
        self, user_id: str | None, email_key: str, subject: str = "", body: str = ""
    ) -> EmailDraft:
        """
        Save one draft and return the stored value as read back after the write.

        Raises:
            ValueError: empty email key
            DocumentStoreError: remote write failed (the draft is kept locally)
        """
        key = normalize_email_key(email_key)
        if not key:
            raise ValueError("Draft needs a contact email")

        draft = EmailDraft(subject=subject or "", body=body or "")

        if not user_id:
            drafts = await self.local.get_drafts()
            drafts[key] = draft.to_document()
            await self.local.set_drafts(drafts)
            return draft

        start_time = time.time()
        try:
            doc = await ensure_user_document(self.gateway, user_id)
            drafts = dict(doc.get(EMAIL_DRAFTS_FIELD) or {})
            drafts[key] = draft.to_document()
            await self.gateway.update_doc(user_id, {EMAIL_DRAFTS_FIELD: drafts})

        except DocumentStoreError as e:
            log_store_write(
                "save_draft",
                user_id,
                ok=False,
                duration_ms=(time.time() - start_time) * 1000,
                error=e.message,
            )
            local_drafts = await self.local.get_drafts()
            local_drafts[key] = draft.to_document()
            await self.local.set_drafts(local_drafts)
            raise

        log_store_write(
            "save_draft", user_id, ok=True, duration_ms=(time.time() - start_time) * 1000
        )

        stored = await self.get_draft(user_id, key)
        return stored or draft

    async def delete_draft(self, user_id: str | None, email_key: str) -> bool:
        """Remove one draft. Returns False when there was none."""
        key = normalize_email_key(email_key)

        if not user_id:
            drafts = await self.local.get_drafts()
            if drafts.pop(key, None) is None:
                return False
            await self.local.set_drafts(drafts)
            return True

        start_time = time.time()
        try:
            doc = await self.gateway.get_doc(user_id)
            drafts = dict((doc or {}).get(EMAIL_DRAFTS_FIELD) or {})
            if drafts.pop(key, None) is None:
                return False
            await self.gateway.update_doc(user_id, {EMAIL_DRAFTS_FIELD: drafts})

        except DocumentStoreError as e:
            log_store_write(
                "delete_draft",
                user_id,
                ok=False,
                duration_ms=(time.time() - start_time) * 1000,
                error=e.message,
            )
            raise

        log_store_write(
            "delete_draft", user_id, ok=True, duration_ms=(time.time() - start_time) * 1000
        )
        return True
