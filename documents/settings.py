"""
BlobDB Store Settings
=====================
Tunables for a DocumentStore, with environment overrides.

  BLOBDB_MAINTENANCE_WORKERS            maintenance pool size       (10)
  BLOBDB_FANOUT_WORKERS                 fanout pool size            (10)
  BLOBDB_MAINTENANCE_DEADLINE_SECONDS   per-task deadline; "none"
                                        disables it                 (30.0)
  BLOBDB_ENABLE_ENCRYPTION              server-side encryption flag (false)
  BLOBDB_NAMESPACE                      reserved key namespace      (::db::)
  BLOBDB_FAULT_HISTORY                  faults kept in memory       (100)

Unparseable values fall back to the default.
"""

import os
from dataclasses import dataclass
from typing import Optional

from indexing.key_encoding import DEFAULT_NAMESPACE


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in {"none", "null", "off"}:
        return None
    try:
        return float(lowered)
    except ValueError:
        return default


@dataclass(frozen=True)
class StoreSettings:
    maintenance_workers: int = 10
    fanout_workers: int = 10
    maintenance_deadline_seconds: Optional[float] = 30.0
    enable_encryption: bool = False
    namespace: str = DEFAULT_NAMESPACE
    fault_history: int = 100

    def __post_init__(self):
        if self.maintenance_workers < 1:
            raise ValueError(
                f"maintenance_workers must be >= 1, got {self.maintenance_workers}")
        if self.fanout_workers < 1:
            raise ValueError(f"fanout_workers must be >= 1, got {self.fanout_workers}")
        if not self.namespace:
            raise ValueError("namespace must not be empty")

    @property
    def max_backend_concurrency(self) -> int:
        """Upper bound on simultaneous backend calls from index work."""
        return self.maintenance_workers * self.fanout_workers

    @classmethod
    def from_env(cls) -> "StoreSettings":
        return cls(
            maintenance_workers=_env_int("BLOBDB_MAINTENANCE_WORKERS", 10),
            fanout_workers=_env_int("BLOBDB_FANOUT_WORKERS", 10),
            maintenance_deadline_seconds=_env_float(
                "BLOBDB_MAINTENANCE_DEADLINE_SECONDS", 30.0
            ),
            enable_encryption=_env_bool("BLOBDB_ENABLE_ENCRYPTION", False),
            namespace=os.getenv("BLOBDB_NAMESPACE", "") or DEFAULT_NAMESPACE,
            fault_history=_env_int("BLOBDB_FAULT_HISTORY", 100),
        )
