"""
BlobDB Field Values
===================
Total extraction of indexed field values from document payloads, and
the per-field diff between a document's previous and new content.

Rules (identical for maintenance and backfill):
  - absent document            -> NO_VALUE
  - payload that is not JSON   -> NO_VALUE (treated as a non-object)
  - non-object document        -> NO_VALUE
  - field missing or null      -> NO_VALUE
  - object / array field       -> NO_VALUE (not indexable)
  - string / number / boolean  -> FieldValue(marker text)
  - NaN / Infinity             -> NO_VALUE

Numbers keep their JSON source text ("1.50" stays "1.50"), matching
markers written by other clients of the same bucket.

Two values are equal when their marker text is equal, so a change that
leaves the marker key untouched ("1" -> 1) produces no writes.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Union

from indexing.key_encoding import scalar_text


logger = logging.getLogger(__name__)


class NoValue:
    """Tag for "this document has no indexable value for the field"."""
    __slots__ = ()

    def __repr__(self) -> str:
        return "NO_VALUE"

    def __bool__(self) -> bool:
        return False

    def __eq__(self, other) -> bool:
        return isinstance(other, NoValue)

    def __hash__(self) -> int:
        return hash(NoValue)


NO_VALUE = NoValue()


class JsonNumber(str):
    """A JSON number kept as the text it was written with."""
    __slots__ = ()


@dataclass(frozen=True)
class FieldValue:
    text: str


Extracted = Union[FieldValue, NoValue]


def parse_payload(payload: Optional[str]) -> Any:
    """
    Decode a stored payload for indexing. Returns None for an absent
    payload and the raw text when it is not JSON.
    """
    if payload is None:
        return None
    try:
        return json.loads(payload, parse_int=JsonNumber, parse_float=JsonNumber,
                          parse_constant=float)
    except ValueError:
        logger.debug("payload is not JSON; no fields will be indexed")
        return payload


def extract_field(document: Any, field: str) -> Extracted:
    if not isinstance(document, dict):
        return NO_VALUE
    value = document.get(field)
    if value is None or isinstance(value, (dict, list)):
        return NO_VALUE
    try:
        return FieldValue(scalar_text(value))
    except TypeError:
        return NO_VALUE


# ─── Diff ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FieldChange:
    """A changed indexed field: the marker to drop and the one to add."""
    field: str
    previous: Extracted
    new: Extracted

    @property
    def stale_text(self) -> Optional[str]:
        return self.previous.text if isinstance(self.previous, FieldValue) else None

    @property
    def fresh_text(self) -> Optional[str]:
        return self.new.text if isinstance(self.new, FieldValue) else None


def field_change(field: str, previous_doc: Any, new_doc: Any) -> Optional[FieldChange]:
    """Return the change for one field, or None when its value is unchanged."""
    previous = extract_field(previous_doc, field)
    new = extract_field(new_doc, field)
    if previous == new:
        return None
    return FieldChange(field, previous, new)


def diff_fields(fields: Iterable[str], previous_doc: Any,
                new_doc: Any) -> List[FieldChange]:
    """List the changes for every field whose value differs."""
    changes = []
    for field in sorted(fields):
        change = field_change(field, previous_doc, new_doc)
        if change is not None:
            changes.append(change)
    return changes
