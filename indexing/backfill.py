"""
BlobDB Index Backfill
=====================
Populates markers for a newly indexed field across a collection's
existing documents.

Algorithm:
  1. List the collection's document keys page by page.
  2. Per page, fetch and index each document on the fanout pool
     (bounded parallelism), and wait for the whole page.
  3. After the page, raise the first per-document failure, if any.
  4. Return once every page is exhausted.

Backfill only writes markers, never deletes them: a field that was not
tracked before has no markers to remove. Concurrent writes to the same
collection are covered by their own maintenance tasks, which target the
same marker keys, so the scan needs no coordination with them.
"""

import logging
from dataclasses import dataclass
from functools import partial

from concurrency.worker_pool import WorkerPool, run_all
from indexing.field_values import FieldValue, extract_field, parse_payload
from indexing.key_encoding import (
    DEFAULT_NAMESPACE, MARKER_CONTENT_TYPE,
    collection_prefix, document_id_from_key, marker_key,
)
from storage.backend import BlobBackend, iter_pages


logger = logging.getLogger(__name__)

# Per-document outcomes
WRITTEN = "written"
MISSING_VALUE = "missing_value"
VANISHED = "vanished"


@dataclass
class BackfillReport:
    collection: str
    field: str
    pages: int = 0
    documents: int = 0
    markers_written: int = 0
    skipped: int = 0


class IndexBackfill:

    def __init__(self, backend: BlobBackend, pool: WorkerPool,
                 namespace: str = DEFAULT_NAMESPACE, encrypt: bool = False):
        self._backend = backend
        self._pool = pool
        self._namespace = namespace
        self._encrypt = encrypt

    def run(self, collection: str, field: str) -> BackfillReport:
        """Scan the whole collection. Raises the first backend failure."""
        report = BackfillReport(collection, field)
        logger.info("backfilling index %s.%s", collection, field)

        for page in iter_pages(self._backend, collection_prefix(collection)):
            report.pages += 1
            futures = run_all(self._pool, [
                partial(self._index_document, collection, field, key)
                for key in page.keys
            ])

            first_error = None
            for future in futures:
                error = future.exception()
                if error is not None:
                    first_error = first_error or error
                    continue
                report.documents += 1
                outcome = future.result()
                if outcome == WRITTEN:
                    report.markers_written += 1
                elif outcome == VANISHED:
                    report.skipped += 1

            if first_error is not None:
                logger.error("backfill of %s.%s failed on page %d",
                             collection, field, report.pages, exc_info=first_error)
                raise first_error

        logger.info(
            "backfill of %s.%s done: %d documents, %d markers, %d pages",
            collection, field, report.documents, report.markers_written, report.pages,
        )
        return report

    def _index_document(self, collection: str, field: str, key: str) -> str:
        data = self._backend.get(key)
        if data is None:
            # Deleted between listing and fetch.
            return VANISHED

        value = extract_field(parse_payload(data.decode("utf-8", errors="replace")), field)
        if not isinstance(value, FieldValue):
            return MISSING_VALUE

        doc_id = document_id_from_key(key)
        self._backend.put(
            marker_key(collection, field, value.text, doc_id, self._namespace),
            b"", MARKER_CONTENT_TYPE, self._encrypt,
        )
        return WRITTEN
