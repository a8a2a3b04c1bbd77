"""
Document-style access to Supabase tables.

Jobs, the import lock, mapping templates, labels and merges are all
stored as rows keyed by a text id. This wrapper gives services the
get/set/update/delete/watch primitives they need and keeps the "row
vanished" signal explicit: update() and increment() raise
DocumentNotFoundError when no row matched, which is how a running
import notices its job was deleted.
"""

import time
from datetime import datetime
from typing import Any, Callable, Iterator, Optional
import structlog

from config import get_supabase_client
from exceptions import DatabaseError, DocumentNotFoundError

logger = structlog.get_logger(__name__)


# Table names
IMPORT_JOBS = "import_jobs"
IMPORT_LOCKS = "import_locks"
MAPPING_TEMPLATES = "mapping_templates"
LABELS = "labels"
MERGED_ORDERS = "merged_orders"


def utc_now() -> str:
    return datetime.utcnow().isoformat() + "Z"


class DocumentStore:
    """
    Thin document API over the Supabase client.

    All writes stamp updated_at. No operation is transactional; callers
    accept last-write-wins on the same row.
    """

    def __init__(self, client=None):
        self.db = client or get_supabase_client()

    # ===================
    # READ OPERATIONS
    # ===================

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Return the row with this id, or None."""
        try:
            result = (
                self.db.table(collection)
                .select("*")
                .eq("id", doc_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("document_get_failed", collection=collection, doc_id=doc_id, error=str(e))
            raise DatabaseError("select", str(e), {"collection": collection})

        return result.data[0] if result.data else None

    def query(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None
    ) -> list[dict]:
        """Rows matching every equality filter."""
        try:
            query = self.db.table(collection).select("*")
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            if order_by:
                query = query.order(order_by, desc=desc)
            if limit:
                query = query.limit(limit)
            return query.execute().data or []
        except Exception as e:
            logger.error("document_query_failed", collection=collection, error=str(e))
            raise DatabaseError("select", str(e), {"collection": collection})

    def query_in(self, collection: str, column: str, values: list) -> list[dict]:
        """Rows whose column is one of values."""
        if not values:
            return []
        try:
            return (
                self.db.table(collection)
                .select("*")
                .in_(column, list(values))
                .execute()
            ).data or []
        except Exception as e:
            logger.error("document_query_failed", collection=collection, error=str(e))
            raise DatabaseError("select", str(e), {"collection": collection})

    def query_overlaps(self, collection: str, column: str, values: list) -> list[dict]:
        """Rows whose array column shares at least one element with values."""
        if not values:
            return []
        try:
            return (
                self.db.table(collection)
                .select("*")
                .ov(column, list(values))
                .execute()
            ).data or []
        except Exception as e:
            logger.error("document_query_failed", collection=collection, error=str(e))
            raise DatabaseError("select", str(e), {"collection": collection})

    # ===================
    # WRITE OPERATIONS
    # ===================

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> dict:
        """
        Create or overwrite a row.

        With merge=True only the given columns change on an existing row.
        Without it, stored columns missing from data are reset to null.
        """
        payload = {**data, "id": doc_id, "updated_at": utc_now()}
        try:
            if not merge:
                existing = self.get(collection, doc_id)
                if existing:
                    payload = {
                        **{k: None for k in existing if k not in ("id", "created_at")},
                        **payload,
                    }
            result = self.db.table(collection).upsert(payload).execute()
        except DatabaseError:
            raise
        except Exception as e:
            logger.error("document_set_failed", collection=collection, doc_id=doc_id, error=str(e))
            raise DatabaseError("upsert", str(e), {"collection": collection})

        return result.data[0] if result.data else payload

    def insert(self, collection: str, data: dict) -> dict:
        """Append a row and return it as stored."""
        payload = {**data, "updated_at": utc_now()}
        try:
            result = self.db.table(collection).insert(payload).execute()
        except Exception as e:
            logger.error("document_insert_failed", collection=collection, error=str(e))
            raise DatabaseError("insert", str(e), {"collection": collection})
        return result.data[0] if result.data else payload

    def update(self, collection: str, doc_id: str, partial: dict) -> dict:
        """
        Update columns of an existing row.

        Raises:
            DocumentNotFoundError: The row no longer exists
        """
        payload = {**partial, "updated_at": utc_now()}
        try:
            result = (
                self.db.table(collection)
                .update(payload)
                .eq("id", doc_id)
                .execute()
            )
        except Exception as e:
            logger.error("document_update_failed", collection=collection, doc_id=doc_id, error=str(e))
            raise DatabaseError("update", str(e), {"collection": collection})

        if not result.data:
            raise DocumentNotFoundError(collection, doc_id)
        return result.data[0]

    def update_where(self, collection: str, doc_id: str, partial: dict, where: dict[str, Any]) -> Optional[dict]:
        """
        Update a row only while its columns still match where.

        Returns:
            Updated row, or None when the row is gone or no longer matches
        """
        payload = {**partial, "updated_at": utc_now()}
        try:
            query = self.db.table(collection).update(payload).eq("id", doc_id)
            for column, value in where.items():
                query = query.eq(column, value)
            result = query.execute()
        except Exception as e:
            logger.error("document_update_failed", collection=collection, doc_id=doc_id, error=str(e))
            raise DatabaseError("update", str(e), {"collection": collection})

        return result.data[0] if result.data else None

    def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a row. Returns False when nothing matched."""
        try:
            result = self.db.table(collection).delete().eq("id", doc_id).execute()
        except Exception as e:
            logger.error("document_delete_failed", collection=collection, doc_id=doc_id, error=str(e))
            raise DatabaseError("delete", str(e), {"collection": collection})
        return bool(result.data)

    def increment(self, collection: str, doc_id: str, counters: dict[str, int]) -> dict:
        """
        Atomically add to integer columns (field-level increments).

        Runs the increment_counters database function so concurrent queue
        workers never overwrite each other's progress.

        Raises:
            DocumentNotFoundError: The row no longer exists
        """
        try:
            result = self.db.rpc(
                "increment_counters",
                {"p_table": collection, "p_id": doc_id, "p_counters": counters}
            ).execute()
        except Exception as e:
            logger.error("document_increment_failed", collection=collection, doc_id=doc_id, error=str(e))
            raise DatabaseError("increment", str(e), {"collection": collection})

        data = result.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise DocumentNotFoundError(collection, doc_id)
        return data

    # ===================
    # WATCH
    # ===================

    def watch(
        self,
        collection: str,
        doc_id: str,
        interval: float = 1.0,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ) -> Iterator[Optional[dict]]:
        """
        Poll a row and yield it every time it changes.

        Yields None once and stops when the row disappears. Stops silently
        after timeout seconds.
        """
        started = clock()
        last_seen = object()
        while True:
            doc = self.get(collection, doc_id)
            if doc is None:
                yield None
                return
            marker = doc.get("updated_at")
            if marker != last_seen:
                last_seen = marker
                yield doc
            if timeout is not None and clock() - started >= timeout:
                return
            sleep(interval)


_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = DocumentStore()
    return _store
