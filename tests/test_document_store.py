"""
BlobDB Document Store Tests
===========================
End-to-end behaviour of the public surface: document CRUD, asynchronous
index convergence, index creation and backfill, and store lifecycle.
"""

import json
import threading
import time

import pytest

from catalog.index_catalog import BackfillStatus
from documents import DocumentStore, StoreClosedError, StoreSettings
from indexing.key_encoding import catalog_key, document_key, marker_key, status_key
from indexing.maintainer import MaintenanceTimeout
from storage.backend import BackendError
from storage.memory import InMemoryBackend

from tests.helpers import FlakyBackend, markers


def _doc(**fields):
    return json.dumps(fields)


# ═══════════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════════

class TestDocuments:

    def test_get_absent_returns_none(self, store):
        assert store.get("users", "missing") is None

    def test_put_then_get(self, store, backend):
        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert json.loads(store.get("users", "u1")) == {"name": "ada"}
        assert backend.stat("users/u1").content_type == "application/json"

    def test_put_replaces_full_payload(self, store):
        store.put("users", "u1", "application/json", _doc(name="ada", age=36))
        store.put("users", "u1", "application/json", _doc(name="grace"))
        assert json.loads(store.get("users", "u1")) == {"name": "grace"}

    def test_get_propagates_backend_error(self, store, backend):
        backend.fail_get.add("users/u1")
        with pytest.raises(BackendError):
            store.get("users", "u1")

    def test_put_propagates_document_write_error(self, store, backend):
        backend.fail_put.add("users/u1")
        with pytest.raises(BackendError):
            store.put("users", "u1", "application/json", _doc(name="ada"))

    def test_encryption_flag_reaches_backend(self, backend):
        settings = StoreSettings(enable_encryption=True)
        with DocumentStore(backend, settings) as store:
            store.put("users", "u1", "application/json", _doc(name="ada"))
            store.ensure_indexed("users", "name")
        assert backend.stat("users/u1").encrypted
        assert backend.stat(catalog_key("users")).encrypted
        assert backend.stat(marker_key("users", "name", "ada", "u1")).encrypted

    def test_non_json_payload_is_stored_but_never_indexed(self, store, backend):
        store.ensure_indexed("notes", "title")
        store.put("notes", "n1", "text/plain", "just some text")
        assert store.wait_for_indexing(5)
        assert store.get("notes", "n1") == "just some text"
        assert markers(backend, "notes") == []


# ═══════════════════════════════════════════════════════════════════
# Index convergence on writes
# ═══════════════════════════════════════════════════════════════════

class TestIndexConvergence:

    def test_value_change_moves_marker(self, store, backend):
        """put ada -> index name -> put grace: only grace's marker remains."""
        store.put("users", "u1", "application/json", '{"name":"ada"}')
        assert store.wait_for_indexing(5)
        store.ensure_indexed("users", "name")
        store.put("users", "u1", "application/json", '{"name":"grace"}')
        assert store.wait_for_indexing(5)

        assert markers(backend, "users") == ["name/grace/u1"]

    def test_marker_has_empty_payload(self, store, backend):
        store.ensure_indexed("users", "name")
        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)

        obj = backend.stat("::db::/indexData/users/name/ada/u1")
        assert obj is not None
        assert obj.data == b""
        assert obj.content_type == "text/plain"

    def test_every_indexed_field_converges(self, store, backend):
        store.ensure_indexed("users", "name")
        store.ensure_indexed("users", "age")
        store.ensure_indexed("users", "admin")
        store.put("users", "u1", "application/json",
                  _doc(name="ada", age=36, admin=True, city="london"))
        assert store.wait_for_indexing(5)

        assert markers(backend, "users") == [
            "admin/true/u1", "age/36/u1", "name/ada/u1",
        ]

    def test_unindexed_collection_writes_no_markers(self, store, backend):
        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)
        assert backend.keys("::db::/") == []

    def test_missing_field_creates_no_marker(self, store, backend):
        store.ensure_indexed("users", "name")
        store.put("users", "u1", "application/json", _doc(age=3))
        assert store.wait_for_indexing(5)
        assert markers(backend, "users") == []

    @pytest.mark.parametrize("value", [None, {"first": "ada"}, ["ada"]])
    def test_non_scalar_field_creates_no_marker(self, store, backend, value):
        store.ensure_indexed("users", "name")
        store.put("users", "u1", "application/json", json.dumps({"name": value}))
        assert store.wait_for_indexing(5)
        assert markers(backend, "users") == []

    def test_field_becoming_non_scalar_drops_marker(self, store, backend):
        store.ensure_indexed("users", "name")
        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)
        store.put("users", "u1", "application/json", _doc(name={"first": "ada"}))
        assert store.wait_for_indexing(5)
        assert markers(backend, "users") == []

    def test_writes_do_not_touch_other_documents(self, store, backend):
        store.ensure_indexed("users", "name")
        store.put("users", "u1", "application/json", _doc(name="ada"))
        store.put("users", "u2", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)

        store.put("users", "u1", "application/json", _doc(name="grace"))
        store.delete("users", "u3")
        assert store.wait_for_indexing(5)

        assert markers(backend, "users") == ["name/ada/u2", "name/grace/u1"]

    def test_collections_never_share_markers(self, store, backend):
        for collection in ("users", "orders"):
            store.ensure_indexed(collection, "name")
            store.put(collection, "x1", "application/json", _doc(name="same"))
        assert store.wait_for_indexing(5)

        store.put("orders", "x1", "application/json", _doc(name="other"))
        assert store.wait_for_indexing(5)

        assert markers(backend, "users") == ["name/same/x1"]
        assert markers(backend, "orders") == ["name/other/x1"]

    def test_delete_removes_document_and_markers(self, store, backend):
        store.ensure_indexed("users", "name")
        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)

        store.delete("users", "u1")
        assert store.wait_for_indexing(5)

        assert store.get("users", "u1") is None
        assert markers(backend, "users") == []

    def test_numbers_index_as_written(self, store, backend):
        store.ensure_indexed("items", "price")
        store.put("items", "i1", "application/json", '{"price": 1.50}')
        store.put("items", "i2", "application/json", '{"price": 1e5}')
        assert store.wait_for_indexing(5)
        assert markers(backend, "items") == ["price/1.50/i1", "price/1e5/i2"]

        store.put("items", "i1", "application/json", '{"price": 2.25}')
        assert store.wait_for_indexing(5)
        assert markers(backend, "items") == ["price/1e5/i2", "price/2.25/i1"]

    def test_overwriting_undecodable_document(self, store, backend):
        store.ensure_indexed("users", "name")
        backend.put(document_key("users", "u1"), b"\xff\xfe", "application/octet-stream")

        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)

        assert json.loads(store.get("users", "u1")) == {"name": "ada"}
        assert markers(backend, "users") == ["name/ada/u1"]
        assert store.faults.total == 0

    def test_delete_of_absent_document_is_harmless(self, store):
        store.delete("users", "nobody")
        assert store.wait_for_indexing(5)
        assert store.faults.total == 0


# ═══════════════════════════════════════════════════════════════════
# Maintenance failures
# ═══════════════════════════════════════════════════════════════════

class TestMaintenanceFaults:

    def test_failed_field_does_not_block_siblings_or_writer(self, store, backend):
        store.ensure_indexed("users", "name")
        store.ensure_indexed("users", "city")
        backend.fail_put.add("/city/")

        store.put("users", "u1", "application/json", _doc(name="ada", city="london"))
        assert store.wait_for_indexing(5)

        assert store.get("users", "u1") is not None
        assert markers(backend, "users") == ["name/ada/u1"]
        faults = store.faults.recent()
        assert [(f.document_id, f.field) for f in faults] == [("u1", "city")]
        assert isinstance(faults[0].error, BackendError)

    def test_catalog_read_failure_is_reported(self, store, backend):
        store.ensure_indexed("users", "name")
        backend.fail_get.add("indexes/users")

        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)

        faults = store.faults.recent()
        assert len(faults) == 1
        assert faults[0].field is None

    def test_stuck_catalog_load_does_not_starve_maintenance(self, backend):
        settings = StoreSettings(maintenance_workers=1, fanout_workers=4,
                                 maintenance_deadline_seconds=0.2)
        store = DocumentStore(backend, settings)
        try:
            store.ensure_indexed("users", "name")
            backend.block_get.add("/indexes/users")

            store.put("users", "u1", "application/json", _doc(name="ada"))
            store.put("users", "u2", "application/json", _doc(name="bob"))
            assert store.wait_for_indexing(3)

            faults = store.faults.recent()
            assert [(f.document_id, f.field) for f in faults] == [("u1", None), ("u2", None)]
            assert all(isinstance(f.error, MaintenanceTimeout) for f in faults)
        finally:
            backend.gate.set()
            store.close()

    def test_reput_reconverges_after_fault(self, store, backend):
        store.ensure_indexed("users", "name")
        backend.fail_put.add("/name/")
        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)
        assert markers(backend, "users") == []

        backend.fail_put.clear()
        store.put("users", "u1", "application/json", _doc(name="grace"))
        assert store.wait_for_indexing(5)
        assert markers(backend, "users") == ["name/grace/u1"]


# ═══════════════════════════════════════════════════════════════════
# Index creation
# ═══════════════════════════════════════════════════════════════════

class TestEnsureIndexed:

    def test_backfill_covers_every_page(self, store, backend):
        for i in range(10):
            store.put("users", f"u{i}", "application/json", _doc(name=f"n{i}"))
        assert store.wait_for_indexing(5)

        report = store.ensure_indexed("users", "name")

        assert report.pages == 4  # page_size=3
        assert report.markers_written == 10
        assert markers(backend, "users") == sorted(f"name/n{i}/u{i}" for i in range(10))

    def test_backfill_skips_documents_without_value(self, store, backend):
        store.put("users", "u1", "application/json", _doc(name="ada"))
        store.put("users", "u2", "application/json", _doc(age=5))
        store.put("users", "u3", "application/json", "[1, 2]")
        assert store.wait_for_indexing(5)

        report = store.ensure_indexed("users", "name")

        assert report.documents == 3
        assert report.markers_written == 1
        assert markers(backend, "users") == ["name/ada/u1"]

    def test_second_call_is_noop(self, store, backend):
        store.put("users", "u1", "application/json", _doc(name="ada"))
        assert store.wait_for_indexing(5)
        assert store.ensure_indexed("users", "name") is not None
        before = backend.keys()

        assert store.ensure_indexed("users", "name") is None
        assert backend.keys() == before

    def test_catalog_grows_and_keeps_other_fields(self, store, backend):
        store.put("users", "u1", "application/json", _doc(name="ada", age=1))
        assert store.wait_for_indexing(5)
        store.ensure_indexed("users", "name")
        store.ensure_indexed("users", "age")

        assert store.indexed_fields("users") == frozenset({"name", "age"})
        assert backend.get(catalog_key("users")) == b'{"fields":["age","name"]}'
        assert markers(backend, "users") == ["age/1/u1", "name/ada/u1"]

    def test_indexed_fields_of_unknown_collection_is_empty(self, store):
        assert store.indexed_fields("nothing") == frozenset()

    def test_failed_backfill_propagates_and_resumes(self, store, backend):
        store.put("users", "u1", "application/json", _doc(name="ada"))
        store.put("users", "u2", "application/json", _doc(name="bob"))
        assert store.wait_for_indexing(5)
        backend.fail_put.add("/name/bob/")

        with pytest.raises(BackendError):
            store.ensure_indexed("users", "name")
        assert "name" in store.indexed_fields("users")
        assert store.catalog.backfill_status("users", "name") is BackfillStatus.BUILDING

        backend.fail_put.clear()
        report = store.ensure_indexed("users", "name")

        assert report is not None
        assert store.catalog.backfill_status("users", "name") is BackfillStatus.READY
        assert markers(backend, "users") == ["name/ada/u1", "name/bob/u2"]

    def test_concurrent_calls_share_one_backfill(self):
        class CountingBackend(FlakyBackend):
            listings = 0

            def list_page(self, prefix, cursor=None):
                if prefix == "users/":
                    self.listings += 1
                return super().list_page(prefix, cursor)

        backend = CountingBackend()
        backend.put(document_key("users", "u1"), _doc(name="ada").encode(), "application/json")
        backend.block_put.add("/indexData/users/name/")
        results = []

        with DocumentStore(backend) as store:
            def index():
                results.append(store.ensure_indexed("users", "name"))

            threads = [threading.Thread(target=index) for _ in range(2)]
            for t in threads:
                t.start()
            time.sleep(0.2)
            backend.gate.set()
            for t in threads:
                t.join(timeout=5)

        assert backend.listings == 1
        assert sorted(r is None for r in results) == [False, True]
        assert markers(backend, "users") == ["name/ada/u1"]

    def test_catalog_without_status_is_treated_as_complete(self, store, backend):
        backend.put(catalog_key("users"), b'{"fields":["name"]}', "application/json")
        backend.put(document_key("users", "u1"), _doc(name="ada").encode(), "application/json")

        assert store.ensure_indexed("users", "name") is None
        assert backend.get(status_key("users", "name")) is None
        assert markers(backend, "users") == []


# ═══════════════════════════════════════════════════════════════════
# Lifecycle
# ═══════════════════════════════════════════════════════════════════

class TestLifecycle:

    def test_context_manager_closes(self):
        with DocumentStore(InMemoryBackend()) as store:
            store.put("users", "u1", "application/json", _doc(name="ada"))
        with pytest.raises(StoreClosedError):
            store.get("users", "u1")

    def test_close_drains_pending_maintenance(self):
        backend = InMemoryBackend()
        store = DocumentStore(backend)
        store.ensure_indexed("users", "name")
        for i in range(20):
            store.put("users", f"u{i}", "application/json", _doc(name="x"))
        store.close()

        assert len(markers(backend, "users")) == 20

    def test_double_close_safe(self):
        store = DocumentStore(InMemoryBackend())
        store.close()
        store.close()
