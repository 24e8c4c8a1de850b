"""
BlobDB In-Memory Backend
========================
Process-local BlobBackend. Used by tests and for throwaway stores.

Listing:
  Keys are returned in ascending order, page_size keys per page.
  The cursor is the last key of the previous page ("start after"),
  so keys written behind the cursor mid-scan are not revisited.

Thread safety: all state guarded by threading.Lock.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from storage.backend import BlobBackend, ListingPage


DEFAULT_PAGE_SIZE = 1000


@dataclass(frozen=True)
class StoredObject:
    """A stored blob plus the metadata it was written with."""
    data: bytes
    content_type: str
    encrypted: bool = False


class InMemoryBackend(BlobBackend):

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self.page_size = page_size
        self._objects: Dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            obj = self._objects.get(key)
        return obj.data if obj is not None else None

    def put(self, key: str, data: bytes, content_type: str,
            encrypt: bool = False) -> None:
        with self._lock:
            self._objects[key] = StoredObject(bytes(data), content_type, encrypt)

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def list_page(self, prefix: str,
                  cursor: Optional[str] = None) -> ListingPage:
        with self._lock:
            matching = sorted(k for k in self._objects if k.startswith(prefix))
        if cursor is not None:
            matching = [k for k in matching if k > cursor]

        keys = matching[:self.page_size]
        if len(matching) > self.page_size:
            return ListingPage(keys=keys, next_cursor=keys[-1])
        return ListingPage(keys=keys)

    # ─── Inspection ─────────────────────────────────────────────────

    def stat(self, key: str) -> Optional[StoredObject]:
        """Return the stored object with its metadata, or None."""
        with self._lock:
            return self._objects.get(key)

    def keys(self, prefix: str = ""):
        """Sorted snapshot of all keys under prefix."""
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)
