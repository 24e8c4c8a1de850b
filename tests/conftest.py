"""
Shared fixtures for the BlobDB test suite.
"""

import pytest

from documents import DocumentStore, StoreSettings
from tests.helpers import FlakyBackend


@pytest.fixture
def backend():
    return FlakyBackend(page_size=3)


@pytest.fixture
def settings():
    return StoreSettings(maintenance_workers=4, fanout_workers=4,
                         maintenance_deadline_seconds=5.0)


@pytest.fixture
def store(backend, settings):
    s = DocumentStore(backend, settings)
    yield s
    backend.gate.set()
    s.close()
