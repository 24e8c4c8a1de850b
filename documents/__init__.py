"""
BlobDB Documents
================
Public surface: DocumentStore and its settings.
"""

from documents.settings import StoreSettings
from documents.store import DocumentStore, StoreClosedError

__all__ = ["DocumentStore", "StoreClosedError", "StoreSettings"]
