"""
Search History Store.

Bounded, newest-first log of contact searches with their result snapshots,
kept in the `searchHistory` field of the user document. Appending is
best-effort: failures are logged and never reach the caller.
"""

import secrets
import time
from datetime import datetime, timedelta

from pydantic import ValidationError

from outreach.config import settings
from outreach.db.gateway import DocumentStoreError, UserDocumentGateway, ensure_user_document
from outreach.infrastructure.observability.logging import get_logger, log_store_write
from outreach.models.domain.contact_domain import Contact
from outreach.models.domain.user_document import (
    SEARCH_HISTORY_FIELD,
    SearchHistoryEntry,
    utc_now_iso,
)

logger = get_logger(__name__)


def _new_entry_id() -> str:
    return f"{int(time.time() * 1000)}{secrets.token_hex(5)}"


def _next_timestamp(history: list[dict]) -> str:
    """Now, nudged past the newest entry so timestamps stay strictly decreasing."""
    now = utc_now_iso()
    if not history:
        return now
    try:
        head = datetime.fromisoformat(str(history[0].get("timestamp")))
        current = datetime.fromisoformat(now)
    except (TypeError, ValueError):
        return now
    if current <= head:
        return (head + timedelta(microseconds=1)).isoformat()
    return now


class SearchHistoryStore:
    def __init__(self, gateway: UserDocumentGateway, limit: int | None = None):
        self.gateway = gateway
        self.limit = limit or settings.SEARCH_HISTORY_LIMIT

    async def save_search_history(
        self, user_id: str | None, query: str, contacts: list[Contact | dict] | None = None
    ) -> SearchHistoryEntry | None:
        """Prepend an entry and truncate. Returns the entry, or None when skipped or failed."""
        if not user_id or not query or not query.strip():
            logger.debug("Search history save skipped", has_user=bool(user_id))
            return None

        start_time = time.time()
        try:
            doc = await ensure_user_document(self.gateway, user_id)
            history = [h for h in doc.get(SEARCH_HISTORY_FIELD) or [] if isinstance(h, dict)]

            timestamp = _next_timestamp(history)
            records = [Contact.lenient(c) for c in contacts or []]
            entry = SearchHistoryEntry(
                id=_new_entry_id(),
                query=query.strip(),
                contacts=records,
                result_count=len(records),
                timestamp=timestamp,
                created_at=timestamp,
            )

            updated = [entry.to_document(), *history][: self.limit]
            await self.gateway.update_doc(user_id, {SEARCH_HISTORY_FIELD: updated})

        except (DocumentStoreError, ValidationError) as e:
            log_store_write(
                "save_search_history",
                user_id,
                ok=False,
                duration_ms=(time.time() - start_time) * 1000,
                error=str(e),
            )
            return None

        log_store_write(
            "save_search_history",
            user_id,
            ok=True,
            duration_ms=(time.time() - start_time) * 1000,
            result_count=entry.result_count,
            history_length=len(updated),
        )
        return entry

    async def get_search_history(self, user_id: str | None) -> list[SearchHistoryEntry]:
        if not user_id:
            return []

        try:
            doc = await self.gateway.get_doc(user_id)
        except DocumentStoreError as e:
            logger.error("Failed to read search history", user_id=user_id, error=e.message)
            return []

        entries = []
        for raw in (doc or {}).get(SEARCH_HISTORY_FIELD) or []:
            try:
                entries.append(SearchHistoryEntry.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping malformed history entry", user_id=user_id, error=str(e))
        return entries

    async def delete_search_history_entry(self, user_id: str | None, history_id: str) -> bool:
        """
        Remove an entry by id.

        Raises:
            DocumentStoreError: the write failed
        """
        if not user_id or not history_id:
            return False

        doc = await self.gateway.get_doc(user_id)
        history = (doc or {}).get(SEARCH_HISTORY_FIELD) or []
        updated = [h for h in history if not (isinstance(h, dict) and h.get("id") == history_id)]
        if len(updated) == len(history):
            return False

        await self.gateway.update_doc(user_id, {SEARCH_HISTORY_FIELD: updated})
        logger.info("Search history entry deleted", user_id=user_id, history_id=history_id)
        return True
