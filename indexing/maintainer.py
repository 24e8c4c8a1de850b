"""
BlobDB Index Maintainer
=======================
Reconciles marker keys with one document's state transition.

Given (collection, id, previous payload, new payload):
  1. Load the collection's indexed fields from the catalog.
  2. Diff each field's value between previous and new content.
  3. For every changed field, on the fanout pool:
       - delete the marker for the previous value, if there was one
       - write the marker for the new value, if there is one

Each field is an independent failure domain: a failed field is reported
to the fault channel and its siblings still reconcile. Nothing here is
raised to the writer. The delete and the write of one field are not
ordered for readers; a reader mid-transition may see zero or two
markers for the document.

A maintenance task has a hard deadline covering both the catalog load
and the fanout batch. Both run on the fanout pool; the maintenance
worker only waits. On expiry the task reports a timeout fault (for the
whole task when the catalog load is stuck, per field otherwise) and
frees its worker. A stuck fanout call keeps its own slot until the
backend times out.
"""

import logging
import time
from concurrent.futures import TimeoutError as FuturesTimeout
from functools import partial
from typing import List, Optional

from catalog.index_catalog import IndexCatalog
from concurrency.faults import FaultChannel, MaintenanceFault
from concurrency.worker_pool import WorkerPool, run_all
from indexing.field_values import FieldChange, diff_fields, parse_payload
from indexing.key_encoding import DEFAULT_NAMESPACE, MARKER_CONTENT_TYPE, marker_key
from storage.backend import BlobBackend


logger = logging.getLogger(__name__)


class MaintenanceTimeout(TimeoutError):
    """A maintenance task missed its deadline."""
    pass


class IndexMaintainer:

    def __init__(self, backend: BlobBackend, catalog: IndexCatalog,
                 pool: WorkerPool, faults: FaultChannel,
                 namespace: str = DEFAULT_NAMESPACE, encrypt: bool = False,
                 deadline_seconds: Optional[float] = None):
        self._backend = backend
        self._catalog = catalog
        self._pool = pool
        self._faults = faults
        self._namespace = namespace
        self._encrypt = encrypt
        self._deadline = deadline_seconds

    def run(self, collection: str, doc_id: str,
            previous_payload: Optional[str], new_payload: Optional[str]) -> int:
        """
        Entry point for a maintenance task. Never raises: failures go
        to the fault channel. Returns the number of fields reconciled.
        """
        try:
            return self.apply(collection, doc_id, previous_payload, new_payload)
        except Exception as e:
            self._faults.report(MaintenanceFault(collection, doc_id, None, e))
            return 0

    def apply(self, collection: str, doc_id: str,
              previous_payload: Optional[str], new_payload: Optional[str]) -> int:
        started = time.monotonic()
        planning = self._pool.submit(self._plan, collection, previous_payload, new_payload)
        try:
            changes = planning.result(timeout=self._remaining(started))
        except FuturesTimeout:
            raise MaintenanceTimeout(
                f"index catalog of '{collection}' not loaded within {self._deadline}s") from None
        if not changes:
            return 0

        calls = [partial(self._reconcile, collection, doc_id, c) for c in changes]
        futures = run_all(self._pool, calls, timeout=self._remaining(started))

        reconciled = 0
        for change, future in zip(changes, futures):
            if not future.done():
                error = MaintenanceTimeout(
                    f"field '{change.field}' not reconciled within {self._deadline}s")
                self._faults.report(MaintenanceFault(collection, doc_id, change.field, error))
            elif future.exception() is not None:
                self._faults.report(
                    MaintenanceFault(collection, doc_id, change.field, future.exception()))
            else:
                reconciled += 1
        return reconciled

    def _plan(self, collection: str, previous_payload: Optional[str],
              new_payload: Optional[str]) -> List[FieldChange]:
        fields = self._catalog.get(collection)
        if not fields:
            return []
        return diff_fields(fields, parse_payload(previous_payload),
                           parse_payload(new_payload))

    def _remaining(self, started: float) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - (time.monotonic() - started), 0.0)

    def _reconcile(self, collection: str, doc_id: str, change: FieldChange) -> None:
        """Apply one field's change; both halves are attempted."""
        first_error = None

        if change.stale_text is not None:
            stale = marker_key(collection, change.field, change.stale_text,
                               doc_id, self._namespace)
            try:
                self._backend.delete(stale)
                logger.debug("dropped marker %s", stale)
            except Exception as e:
                first_error = e

        if change.fresh_text is not None:
            fresh = marker_key(collection, change.field, change.fresh_text,
                               doc_id, self._namespace)
            try:
                self._backend.put(fresh, b"", MARKER_CONTENT_TYPE, self._encrypt)
                logger.debug("wrote marker %s", fresh)
            except Exception as e:
                first_error = first_error or e

        if first_error is not None:
            raise first_error
