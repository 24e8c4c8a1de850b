"""
BlobDB Index Catalog
====================
Durable record of which fields are indexed, one entry per collection.

Storage:
  <ns>/indexes/<collection>          {"fields":["name",...]}
  <ns>/indexStatus/<collection>/<f>  "building" | "ready"

  A missing catalog entry is an empty field set. Field sets only grow.

ensure_indexed(collection, field):
  1. Field already cataloged -> no-op, unless its backfill status is
     still "building" (an earlier backfill crashed or failed), in which
     case the backfill is run again. Catalogs written before status keys
     existed have no status and are treated as complete.
  2. Otherwise: status "building" -> persist catalog with the field ->
     backfill the collection -> status "ready".

  Backend failures propagate to the caller. Nothing is rolled back: a
  persisted catalog with a "building" status is resumed by the next
  ensure_indexed call for the same field.

Concurrency:
  The read-union-write of the field set is serialized within a process,
  and so is the backfill of one field: a concurrent ensure_indexed call
  for a field whose backfill is in flight waits for it instead of
  scanning again.
  Two processes growing the same collection's catalog concurrently can
  still lose one another's field.
"""

import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

from indexing.backfill import BackfillReport, IndexBackfill
from indexing.key_encoding import (
    CATALOG_CONTENT_TYPE, DEFAULT_NAMESPACE, MARKER_CONTENT_TYPE,
    catalog_key, status_key,
)
from storage.backend import BlobBackend


logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """A stored catalog entry could not be decoded."""
    pass


class BackfillStatus(Enum):
    BUILDING = "building"
    READY = "ready"


@dataclass(frozen=True)
class IndexedFields:
    """Immutable set of indexed field names. Updates return new values."""
    fields: FrozenSet[str] = frozenset()

    def __contains__(self, field: str) -> bool:
        return field in self.fields

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.fields))

    def __len__(self) -> int:
        return len(self.fields)

    def with_field(self, field: str) -> "IndexedFields":
        return IndexedFields(self.fields | {field})

    def to_json(self) -> str:
        return json.dumps({"fields": sorted(self.fields)}, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> "IndexedFields":
        try:
            data = json.loads(text)
            fields = data.get("fields") or []
            if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
                raise ValueError("field names must be strings")
            return cls(frozenset(fields))
        except (ValueError, AttributeError, TypeError) as e:
            raise CatalogError(f"Corrupted catalog entry: {e}") from e


class IndexCatalog:

    def __init__(self, backend: BlobBackend, backfill: IndexBackfill,
                 namespace: str = DEFAULT_NAMESPACE, encrypt: bool = False):
        self._backend = backend
        self._backfill = backfill
        self._namespace = namespace
        self._encrypt = encrypt
        self._write_lock = threading.Lock()
        # (collection, field) -> set when that backfill ends
        self._running: Dict[Tuple[str, str], threading.Event] = {}

    # ─── Reads ──────────────────────────────────────────────────────

    def get(self, collection: str) -> IndexedFields:
        data = self._backend.get(catalog_key(collection, self._namespace))
        if data is None:
            return IndexedFields()
        try:
            return IndexedFields.from_json(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise CatalogError(f"Corrupted catalog entry for '{collection}': {e}") from e

    def backfill_status(self, collection: str, field: str) -> Optional[BackfillStatus]:
        """Status of a field's backfill, or None when none was recorded."""
        data = self._backend.get(status_key(collection, field, self._namespace))
        if data is None:
            return None
        try:
            return BackfillStatus(data.decode("utf-8").strip())
        except (UnicodeDecodeError, ValueError):
            logger.warning("unrecognized backfill status for %s.%s: %r",
                           collection, field, data)
            return None

    # ─── Index creation ─────────────────────────────────────────────

    def ensure_indexed(self, collection: str, field: str) -> Optional[BackfillReport]:
        """
        Make field indexed on collection, backfilling existing documents.
        Returns the backfill report, or None when nothing had to be done.
        """
        key = (collection, field)
        while True:
            with self._write_lock:
                running = self._running.get(key)
                if running is None:
                    current = self.get(collection)
                    if field in current:
                        if self.backfill_status(collection, field) is not BackfillStatus.BUILDING:
                            return None
                        logger.info("resuming interrupted backfill of %s.%s",
                                    collection, field)
                    else:
                        self._set_status(collection, field, BackfillStatus.BUILDING)
                        self._save(collection, current.with_field(field))
                        logger.info("indexed %s.%s (fields now: %s)",
                                    collection, field, ", ".join(current.with_field(field)))
                    running = self._running[key] = threading.Event()
                    break
            # Another caller is backfilling this field; re-check once it ends.
            logger.debug("waiting for in-flight backfill of %s.%s", collection, field)
            running.wait()

        try:
            report = self._backfill.run(collection, field)
            self._set_status(collection, field, BackfillStatus.READY)
        finally:
            with self._write_lock:
                del self._running[key]
            running.set()
        return report

    def _save(self, collection: str, fields: IndexedFields) -> None:
        self._backend.put(
            catalog_key(collection, self._namespace),
            fields.to_json().encode("utf-8"), CATALOG_CONTENT_TYPE, self._encrypt,
        )

    def _set_status(self, collection: str, field: str, status: BackfillStatus) -> None:
        self._backend.put(
            status_key(collection, field, self._namespace),
            status.value.encode("utf-8"), MARKER_CONTENT_TYPE, self._encrypt,
        )
