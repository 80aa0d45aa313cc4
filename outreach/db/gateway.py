"""
User Document Gateway.

Every store reads and writes the per-user document through this contract:
`get_doc`, `set_doc(merge=...)` and `update_doc` with dotted field paths.
Writes stamp `updatedAt` and return it.
"""

import asyncio
import copy
from typing import Any, Protocol

from outreach.errors import ErrorKind, OutreachError
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.domain.user_document import (
    UPDATED_AT_FIELD,
    build_user_skeleton,
    utc_now_iso,
)

logger = get_logger(__name__)


class DocumentStoreError(OutreachError):
    """Document store unreachable or the write failed."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.NETWORK, recoverable: bool = True):
        super().__init__(message, kind, recoverable)


class DocumentNotFoundError(DocumentStoreError):
    """`update_doc` on a user that has no document yet."""

    def __init__(self, user_id: str):
        super().__init__(f"User document {user_id} does not exist", ErrorKind.STORE_MISS)
        self.user_id = user_id


class DocumentPermissionError(DocumentStoreError):
    """The store refused the operation for this user."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, ErrorKind.PERMISSION, recoverable=False)


class UserDocumentGateway(Protocol):
    async def get_doc(self, user_id: str) -> dict[str, Any] | None: ...

    async def set_doc(self, user_id: str, doc: dict[str, Any], merge: bool = False) -> str: ...

    async def update_doc(self, user_id: str, partial: dict[str, Any]) -> str: ...


def deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Merge `incoming` into a copy of `base`; nested dicts merge, everything else overwrites."""
    merged = copy.deepcopy(base)
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_dotted(doc: dict[str, Any], partial: dict[str, Any]) -> dict[str, Any]:
    """
    Apply an update whose keys may be dotted paths.

    `{"contacts.shortlist": [...]}` replaces that leaf and leaves
    `contacts.sent` and `contacts.trash` alone. Missing parents are created.
    """
    updated = copy.deepcopy(doc)
    for path, value in partial.items():
        parts = path.split(".")
        node = updated
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = copy.deepcopy(value)
    return updated


class InMemoryDocumentGateway:
    """Process-local gateway with the same merge semantics as the Postgres one."""

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None):
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self._lock = asyncio.Lock()

    async def get_doc(self, user_id: str) -> dict[str, Any] | None:
        doc = self._documents.get(user_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set_doc(self, user_id: str, doc: dict[str, Any], merge: bool = False) -> str:
        async with self._lock:
            current = self._documents.get(user_id)
            if merge and current is not None:
                new_doc = deep_merge(current, doc)
            else:
                new_doc = copy.deepcopy(doc)
            updated_at = utc_now_iso()
            new_doc[UPDATED_AT_FIELD] = updated_at
            self._documents[user_id] = new_doc
        logger.debug("Document set", user_id=user_id, merge=merge, fields=len(doc))
        return updated_at

    async def update_doc(self, user_id: str, partial: dict[str, Any]) -> str:
        async with self._lock:
            current = self._documents.get(user_id)
            if current is None:
                raise DocumentNotFoundError(user_id)
            new_doc = apply_dotted(current, partial)
            updated_at = utc_now_iso()
            new_doc[UPDATED_AT_FIELD] = updated_at
            self._documents[user_id] = new_doc
        logger.debug("Document updated", user_id=user_id, fields=sorted(partial))
        return updated_at

    def snapshot(self, user_id: str) -> dict[str, Any] | None:
        """Synchronous copy of a stored document."""
        doc = self._documents.get(user_id)
        return copy.deepcopy(doc) if doc is not None else None


async def ensure_user_document(gateway: UserDocumentGateway, user_id: str) -> dict[str, Any]:
    """Return the user's document, creating the skeleton first when it does not exist."""
    doc = await gateway.get_doc(user_id)
    if doc is not None:
        return doc

    logger.info("User document missing, creating skeleton", user_id=user_id)
    skeleton = build_user_skeleton()
    updated_at = await gateway.set_doc(user_id, skeleton)
    skeleton[UPDATED_AT_FIELD] = updated_at
    return skeleton
