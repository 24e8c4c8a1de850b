"""
BlobDB Blob Backend Interface
=============================
Capability interface for the key -> bytes object store that everything
else in BlobDB is layered on.

Contract:
  get(key)          -> bytes, or None when the key does not exist
  put(key, data, content_type, encrypt)
  delete(key)       -> absence of the key is not an error
  list_page(prefix, cursor) -> ListingPage

Consistency:
  Read-your-writes is NOT guaranteed immediately after a put or delete.
  Callers must treat every read as possibly stale.

Errors:
  Adapters translate every transport/service failure into BackendError.
  "Not found" is never an error; it is the None result of get().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, List, Optional


class BackendError(Exception):
    """Transport or service failure reported by a blob backend."""

    def __init__(self, operation: str, key: str, message: str):
        self.operation = operation
        self.key = key
        super().__init__(f"{operation} '{key}' failed: {message}")


@dataclass(frozen=True)
class ListingPage:
    """One page of a prefix listing."""
    keys: List[str] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def truncated(self) -> bool:
        """True while more pages remain after this one."""
        return self.next_cursor is not None


class BlobBackend(ABC):
    """Abstract blob store. See module docstring for the contract."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str,
            encrypt: bool = False) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def list_page(self, prefix: str,
                  cursor: Optional[str] = None) -> ListingPage:
        """
        Return one page of keys starting with prefix.
        Pass the previous page's next_cursor to continue.
        """
        ...


# ─── Pagination helpers ─────────────────────────────────────────────────

def iter_pages(backend: BlobBackend, prefix: str) -> Iterator[ListingPage]:
    """Yield listing pages lazily, following the backend cursor."""
    page = backend.list_page(prefix)
    while True:
        yield page
        if not page.truncated:
            return
        page = backend.list_page(prefix, page.next_cursor)


def iter_keys(backend: BlobBackend, prefix: str) -> Iterator[str]:
    """Yield every key under prefix, page by page."""
    for page in iter_pages(backend, prefix):
        yield from page.keys
