"""
BlobDB Fault Channel
====================
Out-of-band reporting for asynchronous index maintenance.

A MaintenanceFault records one failed reconciliation: one field of one
document, or a whole maintenance task (field=None) that missed its
deadline. Faults are logged and handed to subscribers; they are never
raised back to the writer, whose put() has already returned.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field as dataclass_field
from typing import Callable, Deque, List, Optional


logger = logging.getLogger(__name__)

DEFAULT_HISTORY = 100


@dataclass(frozen=True)
class MaintenanceFault:
    collection: str
    document_id: str
    field: Optional[str]
    error: BaseException
    occurred_at: float = dataclass_field(default_factory=time.time)

    def describe(self) -> str:
        target = f"{self.collection}/{self.document_id}"
        if self.field is not None:
            target += f" field '{self.field}'"
        return f"{target}: {type(self.error).__name__}: {self.error}"


FaultListener = Callable[[MaintenanceFault], None]


class FaultChannel:

    def __init__(self, history: int = DEFAULT_HISTORY):
        self._recent: Deque[MaintenanceFault] = deque(maxlen=max(history, 1))
        self._listeners: List[FaultListener] = []
        self._lock = threading.Lock()
        self._total = 0

    def subscribe(self, listener: FaultListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: FaultListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def report(self, fault: MaintenanceFault) -> None:
        logger.warning("index maintenance fault on %s", fault.describe(),
                       exc_info=fault.error)
        with self._lock:
            self._recent.append(fault)
            self._total += 1
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(fault)
            except Exception:
                logger.exception("fault listener %r failed", listener)

    def recent(self) -> List[MaintenanceFault]:
        """Most recent faults, oldest first."""
        with self._lock:
            return list(self._recent)

    @property
    def total(self) -> int:
        """Faults reported since creation, including those rotated out."""
        with self._lock:
            return self._total
