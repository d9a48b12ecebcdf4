"""
Relational resolution engine.

Given shallow records of one collection, the resolver fetches every record
they reference through foreign keys, then every record *those* reference, and
so on until a level references nothing new. Each level costs one batch round
trip, however many records or target collections it involves:

    level 0: rooms r7            (already read by the caller)
    level 1: peers p2, p3, p4    -> 1 batch, one HMGET on "peers"
    level 2: guests g5, g6, g7   -> 1 batch, one HMGET on "guests"

The fetched records are then reassembled into :class:`ResolvedRecord` trees.
"""

from __future__ import annotations

from typing import Iterable

from .exceptions import StoreError, StoreOperationError
from .keys import to_collection_field
from .metadata import RecordMetadata, RelationKind, ResolvedRecord
from .store_protocol import BackingStore

RecordKey = tuple[str, str]


def compact_foreign_ids(
    records: Iterable[RecordMetadata],
    known: Iterable[RecordKey] = (),
) -> dict[str, list[str]]:
    """
    Collect referenced ids per target collection.

    Ids are deduplicated across records and fields and keep first-seen order.
    Pairs listed in ``known`` are skipped. Collections with no id left are
    omitted.
    """
    seen = set(known)
    wanted: dict[str, list[str]] = {}
    for metadata in records:
        for name, declaration in metadata.foreign_keys.items():
            for foreign_id in metadata.foreign_ids(name):
                key = (declaration.collection, foreign_id)
                if key in seen:
                    continue
                seen.add(key)
                wanted.setdefault(declaration.collection, []).append(foreign_id)
    return wanted


class ForeignKeyResolver:
    """
    Resolve foreign-key graphs with one backing store batch per depth.

    Parameters
    ----------
    backend:
        Backing store to read foreign records from.
    prefix:
        Namespace prefix applied to foreign collection names.
    """

    def __init__(self, backend: BackingStore, prefix: str = "") -> None:
        self._backend = backend
        self._prefix = prefix

    async def resolve(
        self,
        collection: str,
        records: list[RecordMetadata],
    ) -> list[ResolvedRecord]:
        """
        Return ``records`` with every foreign reference resolved recursively.

        Raises
        ------
        StoreOperationError
            ``CollectionFieldInexistent`` when any referenced id is missing.
        """
        cache: dict[RecordKey, RecordMetadata] = {
            (collection, metadata.id): metadata for metadata in records
        }
        level = records
        while level:
            wanted = compact_foreign_ids(level, known=cache)
            if not wanted:
                break
            level = await self._fetch_level(wanted, cache)
        return [self._assemble(collection, metadata, cache, frozenset()) for metadata in records]

    async def _fetch_level(
        self,
        wanted: dict[str, list[str]],
        cache: dict[RecordKey, RecordMetadata],
    ) -> list[RecordMetadata]:
        requests = list(wanted.items())
        batch = self._backend.batch()
        for foreign_collection, ids in requests:
            namespaced = f"{self._prefix}{foreign_collection}"
            batch = batch.hmget(
                namespaced,
                [to_collection_field(namespaced, foreign_id) for foreign_id in ids],
            )
        replies = await self._backend.execute(batch)
        if replies is None:
            raise StoreOperationError(
                StoreError.GENERIC_REDIS_FAILURE, "Foreign record batch was aborted"
            )

        fetched = []
        for (foreign_collection, ids), reply in zip(requests, replies):
            for foreign_id, raw in zip(ids, reply):
                if raw is None:
                    raise StoreOperationError(
                        StoreError.COLLECTION_FIELD_INEXISTENT,
                        f"Foreign record {foreign_collection}:{foreign_id} does not exist",
                    )
                metadata = RecordMetadata.decode(raw)
                cache[(foreign_collection, foreign_id)] = metadata
                fetched.append(metadata)
        return fetched

    def _assemble(
        self,
        collection: str,
        metadata: RecordMetadata,
        cache: dict[RecordKey, RecordMetadata],
        path: frozenset[RecordKey],
    ) -> ResolvedRecord:
        resolved = ResolvedRecord(metadata)
        key = (collection, metadata.id)
        if key in path:
            # Cycle: keep the repeated record shallow.
            return resolved
        path = path | {key}

        for name, declaration in metadata.foreign_keys.items():
            if name not in metadata.value:
                continue
            target = declaration.collection
            ids = metadata.foreign_ids(name)
            if declaration.kind is RelationKind.ONE_TO_MANY:
                resolved.one_to_many[name] = (
                    {
                        foreign_id: self._assemble(target, cache[(target, foreign_id)], cache, path)
                        for foreign_id in ids
                    }
                    if metadata.value[name] is not None
                    else None
                )
            elif declaration.kind is RelationKind.ONE_TO_ONE:
                resolved.one_to_one[name] = (
                    self._assemble(target, cache[(target, ids[0])], cache, path) if ids else None
                )
            else:
                raise ValueError(f"Unsupported relation kind: {declaration.kind!r}")
        return resolved
