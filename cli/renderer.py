"""
BlobDB Result Renderer
======================
Formats command results for the terminal.

  - Payloads printed verbatim (pretty-printed when JSON and pretty=True)
  - Field lists one per line
  - Backfill reports as a one-line summary
  - Errors with a classification prefix
"""

import json
import sys
from typing import Iterable, Optional, TextIO

from indexing.backfill import BackfillReport


class Renderer:

    def __init__(self, output: TextIO = None):
        self.output = output or sys.stdout
        self.pretty: bool = True

    # ─── Public API ─────────────────────────────────────────────────

    def render_payload(self, payload: Optional[str]) -> None:
        if payload is None:
            self._print("(not found)")
            return
        if self.pretty:
            try:
                payload = json.dumps(json.loads(payload), indent=2, sort_keys=True)
            except ValueError:
                pass
        self._print(payload)

    def render_fields(self, fields: Iterable[str]) -> int:
        count = 0
        for name in sorted(fields):
            self._print(name)
            count += 1
        if count == 0:
            self._print("(no indexed fields)")
        return count

    def render_report(self, collection: str, field: str,
                      report: Optional[BackfillReport]) -> None:
        if report is None:
            self._print(f"{collection}.{field} already indexed")
            return
        self._print(
            f"{collection}.{field} indexed: {report.documents} document(s), "
            f"{report.markers_written} marker(s), {report.pages} page(s)"
        )

    def render_message(self, message: str) -> None:
        if message:
            self._print(message)

    def render_error(self, error: Exception) -> None:
        prefix = self._classify_error(type(error).__name__)
        self._print(f"{prefix}: {error}")

    # ─── Helpers ────────────────────────────────────────────────────

    def _classify_error(self, error_type: str) -> str:
        """Map error class name to user-friendly prefix."""
        mapping = {
            "BackendError": "BackendError",
            "CatalogError": "CatalogError",
            "StoreClosedError": "StoreError",
            "UsageError": "UsageError",
            "FileNotFoundError": "UsageError",
            "ValueError": "UsageError",
            "KeyboardInterrupt": "Interrupted",
        }
        return mapping.get(error_type, f"Error[{error_type}]")

    def _print(self, text: str) -> None:
        print(text, file=self.output)
