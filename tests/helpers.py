"""
Test helpers: a backend with injectable failures and marker inspection.
"""

import threading

from indexing.key_encoding import marker_prefix
from storage.backend import BackendError
from storage.memory import InMemoryBackend


class FlakyBackend(InMemoryBackend):
    """
    InMemoryBackend with injectable failures.

    fail_put / fail_delete / fail_get: substrings; any key containing one
    raises BackendError. block_put / block_get: substrings whose calls
    wait on `gate`.
    """

    def __init__(self, page_size: int = 1000):
        super().__init__(page_size=page_size)
        self.fail_put = set()
        self.fail_delete = set()
        self.fail_get = set()
        self.block_put = set()
        self.block_get = set()
        self.gate = threading.Event()

    @staticmethod
    def _hit(patterns, key):
        return any(p in key for p in patterns)

    def get(self, key):
        if self._hit(self.block_get, key):
            self.gate.wait(timeout=10)
        if self._hit(self.fail_get, key):
            raise BackendError("get", key, "injected failure")
        return super().get(key)

    def put(self, key, data, content_type, encrypt=False):
        if self._hit(self.block_put, key):
            self.gate.wait(timeout=10)
        if self._hit(self.fail_put, key):
            raise BackendError("put", key, "injected failure")
        super().put(key, data, content_type, encrypt)

    def delete(self, key):
        if self._hit(self.fail_delete, key):
            raise BackendError("delete", key, "injected failure")
        super().delete(key)


def markers(backend, collection, field=None):
    """Marker keys of a collection (or one field), namespace stripped."""
    prefix = marker_prefix(collection, field)
    return [k[len(prefix):] for k in backend.keys(prefix)]
