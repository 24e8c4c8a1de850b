"""
BlobDB Directory Backend
========================
BlobBackend over a local directory: one file per key.

File layout:
  <root>/<quoted key>      blob payload (raw bytes)
  <root>/.staging/         temp files for in-flight writes

  Keys are percent-quoted into a single flat file name, so "/" inside
  keys never creates directories and "users/u1" can coexist with
  "users/u1/x".

Safety guarantees:
  - Atomic writes: payload is written to a temp file in .staging,
    fsync'd, then os.replace()'d over the target. A crash mid-write
    leaves the previous version intact.
  - Content type and the encryption flag are accepted for interface
    compatibility but not persisted; encryption at rest is the
    filesystem's concern.
"""

import logging
import os
import tempfile
from typing import List, Optional
from urllib.parse import quote, unquote

from storage.backend import BackendError, BlobBackend, ListingPage


logger = logging.getLogger(__name__)

STAGING_DIR = ".staging"
DEFAULT_PAGE_SIZE = 1000


class DirectoryBackend(BlobBackend):

    def __init__(self, root: str, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self._root = os.path.abspath(root)
        self._staging = os.path.join(self._root, STAGING_DIR)
        self.page_size = page_size
        os.makedirs(self._staging, exist_ok=True)

    @property
    def root(self) -> str:
        return self._root

    def _path(self, key: str) -> str:
        return os.path.join(self._root, quote(key, safe=""))

    # ─── Object operations ──────────────────────────────────────────

    def get(self, key: str) -> Optional[bytes]:
        try:
            with open(self._path(key), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendError("get", key, str(e)) from e

    def put(self, key: str, data: bytes, content_type: str,
            encrypt: bool = False) -> None:
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=self._staging, prefix="blob_", suffix=".tmp"
        )
        try:
            with os.fdopen(tmp_fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path(key))
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise BackendError("put", key, str(e)) from e
        logger.debug("wrote %s (%d bytes, %s)", key, len(data), content_type)

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            return
        except OSError as e:
            raise BackendError("delete", key, str(e)) from e

    def list_page(self, prefix: str,
                  cursor: Optional[str] = None) -> ListingPage:
        try:
            with os.scandir(self._root) as entries:
                names = [e.name for e in entries if e.is_file()]
        except OSError as e:
            raise BackendError("list", prefix, str(e)) from e

        matching: List[str] = sorted(
            key for key in (unquote(n) for n in names)
            if key.startswith(prefix) and (cursor is None or key > cursor)
        )
        keys = matching[:self.page_size]
        if len(matching) > self.page_size:
            return ListingPage(keys=keys, next_cursor=keys[-1])
        return ListingPage(keys=keys)
