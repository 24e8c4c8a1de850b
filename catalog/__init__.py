# BlobDB Catalog Package
# ======================
# Durable per-collection record of indexed fields.

from catalog.index_catalog import (
    BackfillStatus, CatalogError, IndexCatalog, IndexedFields,
)
