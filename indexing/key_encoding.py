"""
BlobDB Key Encoding
===================
Key-space layout shared by documents, the index catalog and index
markers. The layout is an interop format: existing buckets depend on
it byte for byte.

Layout:
  <collection>/<id>                                    document
  <ns>/indexes/<collection>                            catalog entry (JSON)
  <ns>/indexData/<collection>/<field>/<value>/<id>     marker (empty body)
  <ns>/indexStatus/<collection>/<field>                backfill status

  <ns> defaults to "::db::". Marker values are inserted as text without
  escaping; a value containing "/" produces a deeper key.

Scalar -> text:
  str   -> itself
  bool  -> "true" / "false"
  number from a payload -> its JSON source text, unchanged ("1.50", "1e5")
  int   -> decimal
  float -> repr(); NaN and infinities are not indexable
"""

import math
from typing import Any


DEFAULT_NAMESPACE = "::db::"

INDEXES_SEGMENT = "indexes"
INDEX_DATA_SEGMENT = "indexData"
INDEX_STATUS_SEGMENT = "indexStatus"

MARKER_CONTENT_TYPE = "text/plain"
CATALOG_CONTENT_TYPE = "application/json"


# ─── Documents ──────────────────────────────────────────────────────────

def document_key(collection: str, doc_id: str) -> str:
    return f"{collection}/{doc_id}"


def collection_prefix(collection: str) -> str:
    """Listing prefix covering every document of a collection."""
    return f"{collection}/"


def document_id_from_key(key: str) -> str:
    """Document id is the text after the final '/'."""
    return key[key.rfind("/") + 1:]


# ─── Reserved namespace ─────────────────────────────────────────────────

def catalog_key(collection: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/{INDEXES_SEGMENT}/{collection}"


def marker_key(collection: str, field: str, value_text: str, doc_id: str,
               namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/{INDEX_DATA_SEGMENT}/{collection}/{field}/{value_text}/{doc_id}"


def marker_prefix(collection: str, field: str = None,
                  namespace: str = DEFAULT_NAMESPACE) -> str:
    """Prefix for all markers of a collection, or of one field."""
    base = f"{namespace}/{INDEX_DATA_SEGMENT}/{collection}/"
    return base if field is None else f"{base}{field}/"


def status_key(collection: str, field: str,
               namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/{INDEX_STATUS_SEGMENT}/{collection}/{field}"


# ─── Values ─────────────────────────────────────────────────────────────

def scalar_text(value: Any) -> str:
    """
    Render a JSON scalar the way it appears inside a marker key.
    Raises TypeError for non-scalars and None.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return repr(value)
    raise TypeError(f"Not an indexable scalar: {type(value).__name__}")
