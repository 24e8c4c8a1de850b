"""
BlobDB Storage Layer
====================
Blob backend interface and adapters.

Usage:
    from storage import BlobBackend, InMemoryBackend, DirectoryBackend
    from storage.s3 import S3Backend
"""

from storage.backend import BackendError, BlobBackend, ListingPage, iter_keys, iter_pages
from storage.memory import InMemoryBackend, StoredObject
from storage.filesystem import DirectoryBackend

__all__ = [
    "BackendError", "BlobBackend", "ListingPage", "iter_keys", "iter_pages",
    "InMemoryBackend", "StoredObject",
    "DirectoryBackend",
]
