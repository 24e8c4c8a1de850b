"""
BlobDB Indexing Module
======================
Secondary field indexes stored as zero-payload marker keys.

Components:
  - key_encoding: Key-space layout for documents, catalog and markers
  - field_values: Total field extraction and per-field diff
  - maintainer: Asynchronous marker reconciliation per document write
  - backfill: Full-collection marker population for a new index
"""
