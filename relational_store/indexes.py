"""
Secondary index maintenance.

An index hash ``<collection>:by:<field>`` maps a field value to the id of the
record currently holding it. Each record remembers, in ``indexedIn``, the
value it was indexed under for every index hash, so stale pointers can be
found and removed on update, overwrite and removal. A pointer is only removed
while it still leads to the record being changed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from .exceptions import BackingStoreError
from .keys import field_from_indexed_collection, to_indexed_collection_name
from .metadata import RecordMetadata
from .store_protocol import BackingStore, Batch

# (index hash, indexed value) naming one hash field.
IndexPointer = tuple[str, str]


@dataclass(frozen=True, slots=True)
class IndexChange:
    """One index pointer that must move because its source field changed."""

    index_hash: str
    field: str
    previous: Any
    next: Any


def index_value(raw: Any) -> str:
    """Return the hash field under which ``raw`` is indexed."""
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


def build_indexed_in(
    namespaced_collection: str,
    value: Mapping[str, Any],
    index_by: Iterable[str],
) -> dict[str, Any]:
    indexed_in: dict[str, Any] = {}
    for by_field in index_by:
        raw = value.get(by_field)
        if raw is None:
            continue
        indexed_in[to_indexed_collection_name(namespaced_collection, str(by_field))] = raw
    return indexed_in


def add_index_entries(batch: Batch, indexed_in: Mapping[str, Any], record_id: str) -> Batch:
    for index_hash, raw in indexed_in.items():
        batch = batch.hset(index_hash, index_value(raw), record_id)
    return batch


def index_changes(metadata: RecordMetadata, next_value: Mapping[str, Any]) -> list[IndexChange]:
    """
    Compare every indexed field of ``metadata`` against ``next_value``.

    Only fields whose value differs produce an :class:`IndexChange`.
    """
    changes = []
    for index_hash, previous in metadata.indexed_in.items():
        by_field = field_from_indexed_collection(index_hash)
        current = next_value.get(by_field)
        if current == previous:
            continue
        changes.append(IndexChange(index_hash, by_field, previous, current))
    return changes



def apply_index_changes(batch: Batch, changes: Iterable[IndexChange], record_id: str) -> Batch:
    """Queue the new pointer of every changed index that still has a value."""
    for change in changes:
        if change.next is not None:
            batch = batch.hset(change.index_hash, index_value(change.next), record_id)
    return batch


def released_pointers(changes: Iterable[IndexChange]) -> list[IndexPointer]:
    """Return the old pointers an update stops using."""
    pointers = []
    for change in changes:
        if change.previous is None:
            continue
        if change.next is None or index_value(change.previous) != index_value(change.next):
            pointers.append((change.index_hash, index_value(change.previous)))
    return pointers


def replaced_pointers(
    previous_indexed_in: Mapping[str, Any],
    next_indexed_in: Mapping[str, Any],
) -> list[IndexPointer]:
    """Return pointers of an overwritten record that its replacement does not reuse."""
    pointers = []
    for index_hash, field_value in record_pointers(previous_indexed_in):
        current = next_indexed_in.get(index_hash)
        if current is not None and index_value(current) == field_value:
            continue
        pointers.append((index_hash, field_value))
    return pointers


def record_pointers(indexed_in: Mapping[str, Any]) -> list[IndexPointer]:
    return [
        (index_hash, index_value(raw)) for index_hash, raw in indexed_in.items() if raw is not None
    ]


async def owned_pointers(
    backend: BackingStore,
    pointers: Sequence[IndexPointer],
    record_id: str,
) -> list[IndexPointer]:
    """
    Keep only the pointers that still lead to ``record_id``.

    Another record may have taken an indexed value since it was written here;
    its pointer must survive this record's cleanup. All pointers are read in
    one batch.
    """
    if not pointers:
        return []
    batch = backend.batch()
    for index_hash, field_value in pointers:
        batch = batch.hget(index_hash, field_value)
    replies = await backend.execute(batch)
    if replies is None:
        raise BackingStoreError("Index pointer read was aborted")
    return [pointer for pointer, owner in zip(pointers, replies) if owner == record_id]


def delete_pointers(batch: Batch, pointers: Iterable[IndexPointer]) -> Batch:
    for index_hash, field_value in pointers:
        batch = batch.hdel(index_hash, field_value)
    return batch


def next_indexed_in(metadata: RecordMetadata, changes: Iterable[IndexChange]) -> dict[str, Any]:
    indexed_in = dict(metadata.indexed_in)
    for change in changes:
        if change.next is None:
            indexed_in.pop(change.index_hash, None)
        else:
            indexed_in[change.index_hash] = change.next
    return indexed_in
