"""
Contact Store.

Single source of truth for a user's triage lists (shortlist / sent / trash).

Every mutation re-reads the user document, applies the change to a fresh
UserContacts, writes the three lists back with dotted-path updates and then
publishes `contacts-updated`. Keys are kept disjoint across the lists.
Destructive operations return a Reversal so callers can offer Undo through
`apply_reversal`.

Write failures never raise: the result object carries the error and its kind.
On a permission failure the cached state is left as it was; on any other
failure the optimistic state is cached and mirrored to the local fallback.
"""

import asyncio
import copy
import time
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import ValidationError

from outreach.config import settings
from outreach.db.gateway import (
    DocumentNotFoundError,
    DocumentPermissionError,
    DocumentStoreError,
    UserDocumentGateway,
    ensure_user_document,
)
from outreach.errors import ErrorKind
from outreach.infrastructure.events import ContactsUpdated, EventBus, Topic, event_bus
from outreach.infrastructure.observability.logging import get_logger, log_store_write
from outreach.models.domain.contact_domain import (
    CONTACT_LISTS,
    Contact,
    ContactListName,
    MutationResult,
    Reversal,
    ReversalEntry,
    UserContacts,
    normalize_email_key,
)
from outreach.models.domain.user_document import CONTACTS_FIELD
from outreach.services.local_fallback import LocalFallbackStore

logger = get_logger(__name__)

Mutator = Callable[[UserContacts], list[ReversalEntry]]


def _unique_keys(email_keys: Iterable[str]) -> list[str]:
    keys: list[str] = []
    for raw in email_keys or []:
        key = normalize_email_key(raw)
        if key and key not in keys:
            keys.append(key)
    return keys


def _move_into(
    contacts: UserContacts, key: str, target: ContactListName, fallback: dict | None = None
) -> ReversalEntry | None:
    """
    Move `key` into `target`, pulling it out of every other list.

    The stored entry travels with the key; `fallback` is appended when the key
    is in no list yet. Returns None when nothing changed.
    """
    located = contacts.locate(key)
    if located is not None and located[0] == target:
        return None
    if located is None and fallback is None:
        return None

    prior_list, stored = located if located is not None else (None, None)
    entry = dict(stored if stored is not None else fallback)

    for name in CONTACT_LISTS:
        if name != target:
            contacts.remove(name, key)
    contacts.append(target, entry)
    return ReversalEntry(key=key, prior_list=prior_list, contact=copy.deepcopy(entry))


class ContactStore:
    """Per-user triage lists persisted through the User Document Gateway."""

    def __init__(
        self,
        gateway: UserDocumentGateway,
        local: LocalFallbackStore | None = None,
        bus: EventBus | None = None,
        verify_writes: bool | None = None,
        verify_delay_s: float | None = None,
    ):
        self.gateway = gateway
        self.local = local or LocalFallbackStore()
        self.bus = bus or event_bus
        self.verify_writes = settings.VERIFY_WRITES if verify_writes is None else verify_writes
        self.verify_delay_s = (
            settings.WRITE_VERIFY_DELAY_S if verify_delay_s is None else verify_delay_s
        )
        self._cache: dict[str, UserContacts] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def cached_contacts(self, user_id: str) -> UserContacts | None:
        """Last state this store saw or wrote for the user (a copy)."""
        cached = self._cache.get(user_id)
        return UserContacts.from_document(cached.to_document()) if cached else None

    async def get_user_contacts(self, user_id: str | None) -> UserContacts:
        """
        Load the user's lists.

        Signed-out callers get the local fallback. A missing document is
        created with the skeleton. The local fallback is used for a signed-in
        user only when the remote read fails; a permission failure yields
        empty lists so another user's local data never shows up.
        """
        if not user_id:
            return await self.local.get_contacts()

        try:
            doc = await ensure_user_document(self.gateway, user_id)
        except DocumentPermissionError as e:
            logger.error("Contacts read denied", user_id=user_id, error=e.message)
            return UserContacts()
        except DocumentStoreError as e:
            logger.warning("Contacts read failed, using local fallback", user_id=user_id, error=e.message)
            return await self.local.get_contacts()

        contacts = UserContacts.from_document(doc.get(CONTACTS_FIELD))
        self._cache[user_id] = contacts
        logger.debug("Contacts loaded", user_id=user_id, **contacts.counts())
        return UserContacts.from_document(contacts.to_document())

    # ------------------------------------------------------------------
    # Single-contact operations
    # ------------------------------------------------------------------

    async def add_to_shortlist(self, user_id: str | None, contact: Contact | dict) -> bool:
        """
        Append to the shortlist.

        Returns False for an unidentifiable contact, a key already present in
        any list, or a failed write.
        """
        if contact is None:
            return False
        try:
            record = Contact.coerce(contact)
        except ValidationError as e:
            logger.warning("Rejected malformed contact", operation="add_to_shortlist", error=str(e))
            return False
        if not record.is_identifiable:
            logger.warning("Rejected contact without email", operation="add_to_shortlist")
            return False

        def mutate(contacts: UserContacts) -> list[ReversalEntry]:
            if contacts.locate(record.key) is not None:
                return []
            contacts.append("shortlist", record.to_document())
            return [ReversalEntry(key=record.key, prior_list=None, contact=record.to_document())]

        result = await self._mutate(user_id, "add_to_shortlist", mutate)
        if result.ok and not result.changed:
            logger.info("Contact already in a list", key=record.key)
        return result.ok and result.changed

    async def remove_from_list(
        self, user_id: str | None, list_name: ContactListName, email_key: str
    ) -> MutationResult:
        """Drop a key from one list only."""
        key = normalize_email_key(email_key)

        def mutate(contacts: UserContacts) -> list[ReversalEntry]:
            removed = contacts.remove(list_name, key) if key else None
            if removed is None:
                return []
            return [ReversalEntry(key=key, prior_list=list_name, contact=removed)]

        return await self._mutate(user_id, f"remove_from_{list_name}", mutate)

    async def remove_from_shortlist(self, user_id: str | None, email_key: str) -> MutationResult:
        return await self.remove_from_list(user_id, "shortlist", email_key)

    async def move_to_trash(self, user_id: str | None, contact: Contact | dict) -> MutationResult:
        return await self._move_contact(user_id, contact, "trash", "move_to_trash")

    async def move_to_sent(self, user_id: str | None, contact: Contact | dict) -> MutationResult:
        return await self._move_contact(user_id, contact, "sent", "move_to_sent")

    async def restore_from_trash(
        self, user_id: str | None, contact: Contact | dict
    ) -> MutationResult:
        return await self._move_contact(user_id, contact, "shortlist", "restore_from_trash")

    async def change_template(
        self, user_id: str | None, contact: Contact | dict | str, template_name: str
    ) -> MutationResult:
        """Set the `template` tag on the shortlist entry; other lists are untouched."""
        try:
            key = (
                normalize_email_key(contact)
                if isinstance(contact, str)
                else Contact.coerce(contact).key
            )
        except ValidationError:
            return self._rejected("change_template", "Contact is malformed")

        def mutate(contacts: UserContacts) -> list[ReversalEntry]:
            index = contacts.index_of("shortlist", key) if key else -1
            if index < 0:
                return []
            entries = contacts.entries("shortlist")
            prior = entries[index]
            if prior.get("template") == template_name:
                return []
            entries[index] = {**prior, "template": template_name}
            return [ReversalEntry(key=key, prior_list="shortlist", contact=copy.deepcopy(prior))]

        return await self._mutate(user_id, "change_template", mutate)

    async def _move_contact(
        self,
        user_id: str | None,
        contact: Contact | dict,
        target: ContactListName,
        operation: str,
    ) -> MutationResult:
        if contact is None:
            return self._rejected(operation, "Contact is required")
        try:
            record = Contact.coerce(contact)
        except ValidationError:
            return self._rejected(operation, "Contact is malformed")
        if not record.is_identifiable:
            return self._rejected(operation, "Contact has no email")

        def mutate(contacts: UserContacts) -> list[ReversalEntry]:
            entry = _move_into(contacts, record.key, target, record.to_document())
            return [entry] if entry else []

        return await self._mutate(user_id, operation, mutate)

    # ------------------------------------------------------------------
    # Bulk operations (one write, one notification)
    # ------------------------------------------------------------------

    async def bulk_trash(self, user_id: str | None, email_keys: Iterable[str]) -> MutationResult:
        """Move each key found in shortlist or sent into trash."""
        return await self._bulk_move(user_id, email_keys, ("shortlist", "sent"), "trash", "bulk_trash")

    async def bulk_send(self, user_id: str | None, email_keys: Iterable[str]) -> MutationResult:
        """Move each key found in shortlist or trash into sent; keys already sent stay put."""
        return await self._bulk_move(user_id, email_keys, ("shortlist", "trash"), "sent", "bulk_send")

    async def bulk_restore(self, user_id: str | None, email_keys: Iterable[str]) -> MutationResult:
        """Move each key found in trash back to the shortlist."""
        return await self._bulk_move(user_id, email_keys, ("trash",), "shortlist", "bulk_restore")

    async def bulk_delete_permanent(
        self, user_id: str | None, email_keys: Iterable[str]
    ) -> MutationResult:
        """Remove keys from trash only; keys elsewhere are ignored."""
        keys = _unique_keys(email_keys)

        def mutate(contacts: UserContacts) -> list[ReversalEntry]:
            entries = []
            for key in keys:
                removed = contacts.remove("trash", key)
                if removed is not None:
                    entries.append(ReversalEntry(key=key, prior_list="trash", contact=removed))
            return entries

        return await self._mutate(user_id, "bulk_delete_permanent", mutate)

    async def _bulk_move(
        self,
        user_id: str | None,
        email_keys: Iterable[str],
        sources: tuple[ContactListName, ...],
        target: ContactListName,
        operation: str,
    ) -> MutationResult:
        keys = _unique_keys(email_keys)

        def mutate(contacts: UserContacts) -> list[ReversalEntry]:
            entries = []
            for key in keys:
                located = contacts.locate(key)
                if located is None or located[0] not in sources:
                    continue
                entry = _move_into(contacts, key, target)
                if entry is not None:
                    entries.append(entry)
            return entries

        return await self._mutate(user_id, operation, mutate)

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    async def apply_reversal(self, user_id: str | None, reversal: Reversal) -> MutationResult:
        """
        Put every key a prior operation touched back where it was.

        Keys that were in no list are removed; the rest are replaced in place
        when already in their prior list, otherwise appended to it. No entry
        is ever duplicated.
        """
        if reversal is None or reversal.is_empty:
            return MutationResult(ok=True)

        def mutate(contacts: UserContacts) -> list[ReversalEntry]:
            undone = []
            for entry in reversal.entries:
                located = contacts.locate(entry.key)
                current_list, current = located if located is not None else (None, None)

                if entry.prior_list is None:
                    if current_list is None:
                        continue
                    contacts.remove(current_list, entry.key)
                elif current_list == entry.prior_list:
                    if current == entry.contact:
                        continue
                    index = contacts.index_of(entry.prior_list, entry.key)
                    contacts.entries(entry.prior_list)[index] = dict(entry.contact)
                else:
                    for name in CONTACT_LISTS:
                        contacts.remove(name, entry.key)
                    contacts.append(entry.prior_list, entry.contact)

                undone.append(
                    ReversalEntry(key=entry.key, prior_list=current_list, contact=current or entry.contact)
                )
            return undone

        return await self._mutate(user_id, f"undo_{reversal.operation}", mutate)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _rejected(self, operation: str, message: str) -> MutationResult:
        logger.warning("Contact operation rejected", operation=operation, reason=message)
        return MutationResult(ok=False, error=message, error_kind=ErrorKind.VALIDATION)

    async def _mutate(self, user_id: str | None, operation: str, mutate: Mutator) -> MutationResult:
        if not user_id:
            return await self._mutate_local(operation, mutate)

        start_time = time.time()

        try:
            doc = await ensure_user_document(self.gateway, user_id)
            contacts = UserContacts.from_document(doc.get(CONTACTS_FIELD))
        except DocumentPermissionError as e:
            return self._write_failed(user_id, operation, e, start_time)
        except DocumentStoreError as e:
            # No fresh read: apply to the last known state so the UI keeps its optimistic view
            contacts = self.cached_contacts(user_id) or UserContacts()
            entries = mutate(contacts)
            if entries:
                await self._keep_optimistic(user_id, contacts)
            return self._write_failed(user_id, operation, e, start_time)

        entries = mutate(contacts)
        if not entries:
            self._cache[user_id] = contacts
            return MutationResult(ok=True, changed=False)

        try:
            await self._write_contacts(user_id, contacts)
        except DocumentPermissionError as e:
            return self._write_failed(user_id, operation, e, start_time)
        except DocumentStoreError as e:
            await self._keep_optimistic(user_id, contacts)
            return self._write_failed(user_id, operation, e, start_time)

        self._cache[user_id] = contacts
        reversal = Reversal(operation=operation, entries=tuple(entries))
        log_store_write(
            operation,
            user_id,
            ok=True,
            duration_ms=(time.time() - start_time) * 1000,
            keys=len(entries),
            **contacts.counts(),
        )
        self.bus.publish(
            Topic.CONTACTS_UPDATED,
            ContactsUpdated(user_id=user_id, operation=operation, keys=reversal.keys),
        )

        if self.verify_writes:
            await self._verify_write(user_id, contacts)

        return MutationResult(ok=True, changed=True, reversal=reversal)

    async def _mutate_local(self, operation: str, mutate: Mutator) -> MutationResult:
        contacts = await self.local.get_contacts()
        entries = mutate(contacts)
        if not entries:
            return MutationResult(ok=True, changed=False)

        if not await self.local.set_contacts(contacts):
            return MutationResult(
                ok=False, error="Failed to save contacts locally", error_kind=ErrorKind.NETWORK
            )

        reversal = Reversal(operation=operation, entries=tuple(entries))
        self.bus.publish(
            Topic.CONTACTS_UPDATED,
            ContactsUpdated(user_id=None, operation=operation, keys=reversal.keys),
        )
        return MutationResult(ok=True, changed=True, reversal=reversal)

    async def _write_contacts(self, user_id: str, contacts: UserContacts) -> None:
        partial: dict[str, Any] = {
            f"{CONTACTS_FIELD}.{name}": contacts.entries(name) for name in CONTACT_LISTS
        }
        try:
            await self.gateway.update_doc(user_id, partial)
        except DocumentNotFoundError:
            # Deleted between read and write: recreate, then write again
            await ensure_user_document(self.gateway, user_id)
            await self.gateway.update_doc(user_id, partial)

    async def _keep_optimistic(self, user_id: str, contacts: UserContacts) -> None:
        self._cache[user_id] = contacts
        if not await self.local.set_contacts(contacts):
            logger.error("Local fallback write failed", user_id=user_id)

    def _write_failed(
        self, user_id: str, operation: str, error: DocumentStoreError, start_time: float
    ) -> MutationResult:
        if error.kind is ErrorKind.PERMISSION:
            logger.error(
                "Contacts write denied; check document store permissions",
                user_id=user_id,
                operation=operation,
            )
        log_store_write(
            operation,
            user_id,
            ok=False,
            duration_ms=(time.time() - start_time) * 1000,
            error=error.message,
            error_kind=error.kind.value,
        )
        return MutationResult(ok=False, error=error.message, error_kind=error.kind)

    async def _verify_write(self, user_id: str, expected: UserContacts) -> None:
        """Read back after a short delay; a mismatch usually means misconfigured permissions."""
        await asyncio.sleep(self.verify_delay_s)
        try:
            doc = await self.gateway.get_doc(user_id)
        except DocumentStoreError as e:
            logger.warning("Write verification read failed", user_id=user_id, error=e.message)
            return

        if doc is None:
            logger.error("Write verification found no document", user_id=user_id)
            return

        actual = UserContacts.from_document(doc.get(CONTACTS_FIELD))
        stale = [name for name in CONTACT_LISTS if actual.keys(name) != expected.keys(name)]
        if stale:
            logger.error(
                "Stale read after write",
                user_id=user_id,
                lists=stale,
                expected=expected.counts(),
                actual=actual.counts(),
            )
        else:
            logger.debug("Write verified", user_id=user_id, **actual.counts())
