"""
Postgres-backed User Document Gateway.

One JSONB row per user. Merges and dotted-path updates are applied in Python
under `SELECT ... FOR UPDATE` so concurrent writers serialize per user.
"""

from typing import Any

from psycopg.types.json import Jsonb

from outreach.db.gateway import (
    DocumentNotFoundError,
    DocumentPermissionError,
    DocumentStoreError,
    apply_dotted,
    deep_merge,
)
from outreach.db.helpers import DatabaseError, execute_query, fetch_one, with_db_retry
from outreach.db.pool import DatabasePoolManager, db_pool
from outreach.infrastructure.observability.logging import get_logger
from outreach.models.domain.user_document import UPDATED_AT_FIELD, utc_now_iso

logger = get_logger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS user_documents (
    user_id TEXT PRIMARY KEY,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

SELECT_DOC_SQL = "SELECT data FROM user_documents WHERE user_id = %s"
SELECT_DOC_FOR_UPDATE_SQL = SELECT_DOC_SQL + " FOR UPDATE"
UPSERT_DOC_SQL = """
INSERT INTO user_documents (user_id, data, updated_at)
VALUES (%s, %s, NOW())
ON CONFLICT (user_id)
DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
"""
UPDATE_DOC_SQL = "UPDATE user_documents SET data = %s, updated_at = NOW() WHERE user_id = %s"


def _to_store_error(e: DatabaseError, user_id: str) -> DocumentStoreError:
    if e.permission_denied:
        logger.error("Document store denied access", user_id=user_id, operation=e.operation)
        return DocumentPermissionError(str(e))
    return DocumentStoreError(str(e), recoverable=e.recoverable)


class PostgresDocumentGateway:
    """UserDocumentGateway over the `user_documents` table."""

    def __init__(self, pool: DatabasePoolManager | None = None):
        self.pool = pool or db_pool

    async def ensure_schema(self) -> None:
        async with self.pool.connection() as conn:
            await execute_query(CREATE_TABLE_SQL, connection=conn)
        logger.info("user_documents table ready")

    async def get_doc(self, user_id: str) -> dict[str, Any] | None:
        try:
            row = await self._fetch(user_id)
        except DatabaseError as e:
            raise _to_store_error(e, user_id) from e
        return row["data"] if row else None

    async def set_doc(self, user_id: str, doc: dict[str, Any], merge: bool = False) -> str:
        try:
            return await self._write(user_id, doc, merge=merge)
        except DatabaseError as e:
            raise _to_store_error(e, user_id) from e

    async def update_doc(self, user_id: str, partial: dict[str, Any]) -> str:
        try:
            return await self._update(user_id, partial)
        except DatabaseError as e:
            raise _to_store_error(e, user_id) from e

    @with_db_retry(max_retries=2)
    async def _fetch(self, user_id: str) -> dict[str, Any] | None:
        async with self.pool.connection() as conn:
            return await fetch_one(SELECT_DOC_SQL, (user_id,), connection=conn)

    @with_db_retry(max_retries=2)
    async def _write(self, user_id: str, doc: dict[str, Any], merge: bool) -> str:
        async with self.pool.transaction() as conn:
            current = None
            if merge:
                row = await fetch_one(SELECT_DOC_FOR_UPDATE_SQL, (user_id,), connection=conn)
                current = row["data"] if row else None

            new_doc = deep_merge(current, doc) if current is not None else dict(doc)
            updated_at = utc_now_iso()
            new_doc[UPDATED_AT_FIELD] = updated_at
            await execute_query(UPSERT_DOC_SQL, (user_id, Jsonb(new_doc)), connection=conn)

        logger.debug("Document set", user_id=user_id, merge=merge)
        return updated_at

    @with_db_retry(max_retries=2)
    async def _update(self, user_id: str, partial: dict[str, Any]) -> str:
        async with self.pool.transaction() as conn:
            row = await fetch_one(SELECT_DOC_FOR_UPDATE_SQL, (user_id,), connection=conn)
            if row is None:
                raise DocumentNotFoundError(user_id)

            new_doc = apply_dotted(row["data"], partial)
            updated_at = utc_now_iso()
            new_doc[UPDATED_AT_FIELD] = updated_at
            await execute_query(UPDATE_DOC_SQL, (Jsonb(new_doc), user_id), connection=conn)

        logger.debug("Document updated", user_id=user_id, fields=sorted(partial))
        return updated_at
