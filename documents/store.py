"""
BlobDB Document Store
=====================
CRUD over JSON-like documents addressed by (collection, id), with
secondary field indexes kept as marker keys in the same backend.

Owns:
  - IndexCatalog, IndexBackfill, IndexMaintainer
  - maintenance + fanout WorkerPools (fixed for the store's lifetime)
  - FaultChannel for asynchronous maintenance failures

Write path:
  put()    read pre-image -> write document -> schedule maintenance
  delete() read pre-image -> delete document -> schedule maintenance
  The caller waits for the document write only. Index convergence is
  asynchronous; wait_for_indexing() blocks until it catches up.

Index creation:
  ensure_indexed() persists the catalog and then blocks for the whole
  backfill scan.

Ordering:
  Two writers of the same document may have their maintenance tasks
  run in either order, leaving markers for an overwritten value until
  the next write. Indexes are eventually consistent, never point-in-time.
"""

import logging
from typing import FrozenSet, Optional

from catalog.index_catalog import IndexCatalog
from concurrency.faults import FaultChannel
from concurrency.worker_pool import WorkerPool
from documents.settings import StoreSettings
from indexing.backfill import BackfillReport, IndexBackfill
from indexing.key_encoding import document_key
from indexing.maintainer import IndexMaintainer
from storage.backend import BlobBackend


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"


class StoreClosedError(Exception):
    """Operation on a DocumentStore after close()."""
    pass


class DocumentStore:
    """
    Document store with asynchronously maintained field indexes.

    Usage:
        with DocumentStore(InMemoryBackend()) as store:
            store.put("users", "u1", "application/json", '{"name": "ada"}')
            store.ensure_indexed("users", "name")
    """

    def __init__(self, backend: BlobBackend,
                 settings: Optional[StoreSettings] = None,
                 faults: Optional[FaultChannel] = None):
        self.settings = settings or StoreSettings()
        self.backend = backend
        self.faults = faults or FaultChannel(self.settings.fault_history)

        s = self.settings
        self._maintenance_pool = WorkerPool("maintenance", s.maintenance_workers)
        self._fanout_pool = WorkerPool("fanout", s.fanout_workers)

        self.backfill = IndexBackfill(
            backend, self._fanout_pool, s.namespace, s.enable_encryption)
        self.catalog = IndexCatalog(
            backend, self.backfill, s.namespace, s.enable_encryption)
        self.maintainer = IndexMaintainer(
            backend, self.catalog, self._fanout_pool, self.faults,
            s.namespace, s.enable_encryption, s.maintenance_deadline_seconds,
        )
        self._closed = False

        logger.debug(
            "document store ready: %d maintenance x %d fanout workers "
            "(<= %d concurrent backend calls)",
            s.maintenance_workers, s.fanout_workers, s.max_backend_concurrency,
        )

    # ─── Documents ──────────────────────────────────────────────────

    def get(self, collection: str, doc_id: str) -> Optional[str]:
        """Return the stored payload, or None when the document is absent."""
        self._check_open()
        data = self.backend.get(document_key(collection, doc_id))
        if data is None:
            return None
        return data.decode("utf-8")

    def put(self, collection: str, doc_id: str, content_type: str,
            payload: str) -> None:
        """
        Replace the document's full payload. Returns once the document is
        written; its index markers converge in the background.
        """
        self._check_open()
        previous = self._previous_payload(collection, doc_id)
        self.backend.put(
            document_key(collection, doc_id), payload.encode("utf-8"),
            content_type or DEFAULT_CONTENT_TYPE, self.settings.enable_encryption,
        )
        self._schedule_maintenance(collection, doc_id, previous, payload)

    def delete(self, collection: str, doc_id: str) -> None:
        """Delete the document; its markers are removed in the background."""
        self._check_open()
        previous = self._previous_payload(collection, doc_id)
        self.backend.delete(document_key(collection, doc_id))
        self._schedule_maintenance(collection, doc_id, previous, None)

    def _previous_payload(self, collection: str, doc_id: str) -> Optional[str]:
        """Pre-image for index maintenance; bytes that are not UTF-8 are replaced."""
        data = self.backend.get(document_key(collection, doc_id))
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")

    def _schedule_maintenance(self, collection: str, doc_id: str,
                              previous: Optional[str], new: Optional[str]) -> None:
        self._maintenance_pool.submit(self.maintainer.run, collection, doc_id, previous, new)

    # ─── Indexes ────────────────────────────────────────────────────

    def ensure_indexed(self, collection: str, field: str) -> Optional[BackfillReport]:
        """Index field on collection; blocks until the backfill completes."""
        self._check_open()
        return self.catalog.ensure_indexed(collection, field)

    def indexed_fields(self, collection: str) -> FrozenSet[str]:
        self._check_open()
        return self.catalog.get(collection).fields

    def wait_for_indexing(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every scheduled maintenance task has finished.
        Returns False if timeout expired first.
        """
        return self._maintenance_pool.wait_idle(timeout)

    # ─── Lifecycle ──────────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError("DocumentStore is closed")

    def close(self, wait: bool = True) -> None:
        """Shut down both pools. Pending maintenance finishes first when wait."""
        if self._closed:
            return
        self._closed = True
        # Maintenance first: its tasks still submit to the fanout pool.
        self._maintenance_pool.shutdown(wait=wait)
        self._fanout_pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
