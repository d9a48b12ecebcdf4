"""
Collection and queue operations over a key-value backing store.

``Store`` treats flat hashes as typed collections of records with identity,
secondary indexes and foreign-key relations. Reads hydrate foreign keys into
nested records through :class:`relational_store.resolution.ForeignKeyResolver`;
writes are serialized with named locks (collection scope for additions, item
scope for updates and removals).

Every public coroutine returns a :class:`relational_store.results.Result`::

    result = await store.get_item_in_collection("peers", "p3")
    if result.ok:
        peer = result.value
    else:
        print(result.error)  # StoreError.COLLECTION_FIELD_INEXISTENT
"""

from __future__ import annotations

import functools
import inspect
import json
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping, Union

from redis.exceptions import RedisError

from .config import StoreConfig
from .exceptions import BackingStoreError, StoreError, StoreOperationError
from .indexes import (
    add_index_entries,
    apply_index_changes,
    build_indexed_in,
    delete_pointers,
    index_changes,
    index_value,
    next_indexed_in,
    owned_pointers,
    record_pointers,
    released_pointers,
    replaced_pointers,
)
from .keys import (
    COUNTER_FIELD,
    collection_lock_name,
    item_lock_name,
    to_collection_field,
    to_indexed_collection_name,
    to_queue_name,
)
from .metadata import ForeignKey, RecordMetadata, normalize_foreign_keys
from .resolution import ForeignKeyResolver
from .results import Err, Ok, Result
from .store_protocol import BackingStore, LockAdapter

Item = dict[str, Any]
ForeignKeysInput = Mapping[str, Union[ForeignKey, Mapping[str, Any]]]
UpdateProps = Union[Mapping[str, Any], Callable[[Item], Any]]

_BACKEND_ERRORS = (BackingStoreError, RedisError, OSError)
# Invalid caller input and corrupt stored JSON.
_DATA_ERRORS = (ValueError, TypeError)
_FAILURES = _BACKEND_ERRORS + _DATA_ERRORS
_LOOKUP_ERRORS = (StoreOperationError,) + _FAILURES


@dataclass(frozen=True, slots=True)
class CollectionReply:
    """
    Outcome of an addition or removal.

    Parameters
    ----------
    item:
        Hydrated record after an addition, ``None`` after a removal.
    index:
        Collection id counter after the operation.
    length:
        Number of records in the collection, excluding the counter field.
    """

    item: Item | None
    index: int
    length: int


def _operation(default: StoreError) -> Callable[..., Callable[..., Awaitable[Result[Any, StoreError]]]]:
    """
    Turn a raising coroutine method into one returning a ``Result``.

    ``StoreOperationError`` keeps its own code; backing store failures and
    data errors such as an undecodable stored record become ``default``.
    Failures are logged through the store's logger.
    """

    def decorate(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Result[Any, StoreError]]]:
        @functools.wraps(method)
        async def wrapper(self: "Store", *args: Any, **kwargs: Any) -> Result[Any, StoreError]:
            try:
                value = await method(self, *args, **kwargs)
            except StoreOperationError as exc:
                self._log_failure(method.__name__, exc.code, exc, args)
                return Err(exc.code)
            except _FAILURES as exc:
                self._log_failure(method.__name__, default, exc, args)
                return Err(default)
            return Ok(value)

        return wrapper

    return decorate


def _canonical_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


class Store:
    """
    Relational collections and queues over a shared backing store.

    Parameters
    ----------
    backend:
        Backing store adapter (Redis or in-process memory).
    locks:
        Named lock adapter. Every writer of the same data must share the same
        lock backend for writes to stay serialized.
    config:
        Namespace and logger settings.
    """

    def __init__(
        self,
        backend: BackingStore,
        locks: LockAdapter,
        config: StoreConfig | None = None,
    ) -> None:
        self.config = config or StoreConfig()
        self._backend = backend
        self._locks = locks
        self._logger = self.config.logger
        self._resolver = ForeignKeyResolver(backend, prefix=self.config.prefix)

    @property
    def backend(self) -> BackingStore:
        """Return the backing store adapter."""
        return self._backend

    @property
    def namespace(self) -> str:
        """Return the key prefix applied to collection names."""
        return self.config.prefix

    def _namespaced(self, collection: str) -> str:
        return f"{self.config.prefix}{collection}"

    def _log_failure(self, operation: str, code: StoreError, exc: Exception, args: tuple[Any, ...]) -> None:
        self._logger.error(
            "Store operation failed operation=%s error=%s target=%r detail=%s",
            operation,
            code.value,
            args[:2],
            exc,
        )

    # ------------------------------------------------------------------ #
    # Locks
    # ------------------------------------------------------------------ #

    @asynccontextmanager
    async def lock_collection(self, collection: str) -> AsyncIterator[None]:
        """Hold the collection-wide lock used to serialize additions."""
        release = await self._locks.acquire(collection_lock_name(self._namespaced(collection)))
        try:
            yield
        finally:
            await release()

    @asynccontextmanager
    async def lock_collection_item(self, collection: str, record_id: str) -> AsyncIterator[None]:
        """Hold the item lock used to serialize updates and removals."""
        release = await self._locks.acquire(
            item_lock_name(self._namespaced(collection), str(record_id))
        )
        try:
            yield
        finally:
            await release()

    # ------------------------------------------------------------------ #
    # Internal reads
    # ------------------------------------------------------------------ #

    async def _get_shallow(self, collection: str, ids: Iterable[str]) -> list[RecordMetadata]:
        """Read stored metadata for ``ids``; any missing id fails the read."""
        ids = [str(record_id) for record_id in ids]
        if not ids:
            return []
        namespaced = self._namespaced(collection)
        replies = await self._backend.hmget(
            namespaced, [to_collection_field(namespaced, record_id) for record_id in ids]
        )
        records = []
        for record_id, raw in zip(ids, replies):
            if raw is None:
                raise StoreOperationError(
                    StoreError.COLLECTION_FIELD_INEXISTENT,
                    f"Record {collection}:{record_id} does not exist",
                )
            records.append(RecordMetadata.decode(raw))
        return records

    async def _get_items(self, collection: str, ids: Iterable[str]) -> list[Item]:
        records = await self._get_shallow(collection, ids)
        resolved = await self._resolver.resolve(collection, records)
        return [record.to_item() for record in resolved]

    async def _indexed_reference(self, collection: str, by_field: str, value: Any) -> str:
        index_hash = to_indexed_collection_name(self._namespaced(collection), str(by_field))
        record_id = await self._backend.hget(index_hash, index_value(value))
        if record_id is None:
            raise StoreOperationError(
                StoreError.COLLECTION_FIELD_INEXISTENT,
                f"No {collection} record indexed by {by_field}={value!r}",
            )
        return record_id

    async def _next_id(self, namespaced: str) -> str:
        counter = await self._backend.hget(namespaced, COUNTER_FIELD)
        if counter is None:
            return "1"
        return str(int(counter) + 1)

    async def _replaced_pointers(self, namespaced: str, metadata: RecordMetadata) -> list[tuple[str, str]]:
        """Return index pointers left behind by the record ``metadata`` overwrites."""
        raw = await self._backend.hget(namespaced, to_collection_field(namespaced, metadata.id))
        if raw is None:
            return []
        previous = RecordMetadata.decode(raw)
        return await owned_pointers(
            self._backend,
            replaced_pointers(previous.indexed_in, metadata.indexed_in),
            metadata.id,
        )

    # ------------------------------------------------------------------ #
    # Collections
    # ------------------------------------------------------------------ #

    @_operation(StoreError.COLLECTION_ADDITION_FAILURE)
    async def add_item_to_collection(
        self,
        collection: str,
        value: Mapping[str, Any],
        record_id: str | None = None,
        *,
        index_by: Iterable[str] = (),
        foreign_keys: ForeignKeysInput | None = None,
    ) -> CollectionReply:
        """
        Add one record and return it hydrated with its counter and size.

        Foreign-key fields in ``value`` hold a foreign id (one-to-one) or a
        ``{foreign_id: None}`` mapping (one-to-many), as declared in
        ``foreign_keys``. Each ``index_by`` field gets a secondary index entry.
        Without ``record_id`` the id is the collection counter plus one. A
        record already stored under the id is replaced, and its index pointers
        that the new value does not reuse are dropped in the same batch.
        """
        namespaced = self._namespaced(collection)
        declarations = normalize_foreign_keys(foreign_keys)
        payload = {name: deepcopy(raw) for name, raw in value.items() if name != "id"}

        async with self.lock_collection(collection):
            resolved_id = str(record_id) if record_id else await self._next_id(namespaced)
            field = to_collection_field(namespaced, resolved_id)
            metadata = RecordMetadata(
                id=resolved_id,
                value=payload,
                foreign_keys=declarations,
                indexed_in=build_indexed_in(namespaced, payload, index_by),
            )

            batch = (
                self._backend.batch()
                .hset(namespaced, field, metadata.encode())
                .hincrby(namespaced, COUNTER_FIELD, 1)
                .hlen(namespaced)
                .hget(namespaced, field)
            )
            batch = add_index_entries(batch, metadata.indexed_in, resolved_id)
            batch = delete_pointers(batch, await self._replaced_pointers(namespaced, metadata))
            replies = await self._backend.execute(batch)
            if replies is None:
                raise StoreOperationError(
                    StoreError.COLLECTION_FIELD_INEXISTENT,
                    f"Addition batch for {collection}:{resolved_id} was aborted",
                )

            stored = RecordMetadata.decode(replies[3])
            [item] = await self._get_items(collection, [stored.id])

        reply = CollectionReply(item=item, index=int(replies[1]), length=int(replies[2]) - 1)
        self._logger.info(
            "Item added collection=%s id=%s length=%s", collection, resolved_id, reply.length
        )
        return reply

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def get_item_in_collection(self, collection: str, record_id: str) -> Item:
        [item] = await self._get_items(collection, [record_id])
        return item

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def get_items_in_collection(self, collection: str, ids: Iterable[str]) -> list[Item]:
        """Return hydrated records in request order; one missing id fails all."""
        return await self._get_items(collection, ids)

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def get_item_in_collection_by(self, collection: str, by_field: str, value: Any) -> Item:
        record_id = await self._indexed_reference(collection, by_field, value)
        [item] = await self._get_items(collection, [record_id])
        return item

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def get_all_items_in_collection(self, collection: str) -> list[Item]:
        """
        Return every record of ``collection`` hydrated in one resolution.

        Order follows the backing store's hash order.
        """
        stored = await self._backend.hgetall(self._namespaced(collection))
        records = [
            RecordMetadata.decode(raw) for field, raw in stored.items() if field != COUNTER_FIELD
        ]
        resolved = await self._resolver.resolve(collection, records)
        return [record.to_item() for record in resolved]

    async def is_item_in_collection(self, collection: str, record_id: str) -> Result[bool, StoreError]:
        try:
            await self._get_shallow(collection, [record_id])
        except _LOOKUP_ERRORS:
            return Ok(False)
        return Ok(True)

    async def is_item_in_collection_by(
        self, collection: str, by_field: str, value: Any
    ) -> Result[bool, StoreError]:
        try:
            record_id = await self._indexed_reference(collection, by_field, value)
        except _LOOKUP_ERRORS:
            return Ok(False)
        return await self.is_item_in_collection(collection, record_id)

    @_operation(StoreError.COLLECTION_UPDATE_FAILURE)
    async def update_item_in_collection(
        self,
        collection: str,
        record_id: str,
        props: UpdateProps,
        *,
        foreign_keys: ForeignKeysInput | None = None,
    ) -> Item:
        """
        Merge ``props`` into a record and return it hydrated.

        ``props`` is a partial value, or a callable receiving a copy of the
        previous value (foreign-key fields unresolved) and returning a partial
        value, an ``Ok``/``Err`` result, or an awaitable of either. The merge
        is shallow and ignores ``id``. ``foreign_keys`` must equal the
        declarations the record was created with.
        """
        namespaced = self._namespaced(collection)
        declarations = normalize_foreign_keys(foreign_keys)

        async with self.lock_collection_item(collection, record_id):
            [previous] = await self._get_shallow(collection, [record_id])
            if declarations != previous.foreign_keys:
                self._logger.error(
                    "Foreign keys mismatch on update collection=%s id=%s previous=%s next=%s",
                    collection,
                    record_id,
                    previous.foreign_keys_as_dict(),
                    {name: declaration.as_dict() for name, declaration in declarations.items()},
                )
                raise StoreOperationError(StoreError.COLLECTION_UPDATE_MISMATCHING_FOREIGN_KEYS)

            changed = await self._resolve_update_props(props, previous)
            next_value = {**previous.value, **{k: v for k, v in changed.items() if k != "id"}}
            changes = index_changes(previous, next_value)
            updated = RecordMetadata(
                id=previous.id,
                value=next_value,
                foreign_keys=previous.foreign_keys,
                indexed_in=next_indexed_in(previous, changes),
            )

            released = await owned_pointers(self._backend, released_pointers(changes), previous.id)
            batch = apply_index_changes(self._backend.batch(), changes, previous.id)
            batch = delete_pointers(batch, released)
            batch = batch.hset(
                namespaced, to_collection_field(namespaced, previous.id), updated.encode()
            )
            if await self._backend.execute(batch) is None:
                raise StoreOperationError(
                    StoreError.COLLECTION_UPDATE_FAILURE,
                    f"Update batch for {collection}:{record_id} was aborted",
                )

            [item] = await self._get_items(collection, [previous.id])

        self._logger.info("Item updated collection=%s id=%s", collection, previous.id)
        return item

    async def _resolve_update_props(self, props: UpdateProps, previous: RecordMetadata) -> Item:
        if callable(props):
            try:
                outcome = props(deepcopy(previous.value))
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as exc:  # noqa: BLE001 - caller code, mapped to taxonomy
                raise StoreOperationError(
                    StoreError.COLLECTION_UPDATE_FAILURE, f"Update function failed: {exc!r}"
                ) from exc
        else:
            outcome = props

        if isinstance(outcome, Err):
            raise StoreOperationError(
                StoreError.COLLECTION_UPDATE_FAILURE, f"Update function returned {outcome!r}"
            )
        if isinstance(outcome, Ok):
            outcome = outcome.value
        if not isinstance(outcome, Mapping):
            raise StoreOperationError(
                StoreError.COLLECTION_UPDATE_FAILURE,
                f"Update props must be a mapping, got {type(outcome).__name__}",
            )
        return dict(outcome)

    @_operation(StoreError.COLLECTION_DELETION_FAILURE)
    async def remove_item_in_collection(self, collection: str, record_id: str) -> CollectionReply:
        """
        Delete one record and every index entry pointing at it.

        Index cleanup runs after the record deletion has committed; its
        failure is logged and does not fail the removal.
        """
        namespaced = self._namespaced(collection)
        async with self.lock_collection_item(collection, record_id):
            [previous] = await self._get_shallow(collection, [record_id])
            batch = (
                self._backend.batch()
                .hdel(namespaced, to_collection_field(namespaced, previous.id))
                .hget(namespaced, COUNTER_FIELD)
                .hlen(namespaced)
            )
            replies = await self._backend.execute(batch)
            if replies is None:
                raise StoreOperationError(
                    StoreError.COLLECTION_DELETION_FAILURE,
                    f"Removal batch for {collection}:{record_id} was aborted",
                )
            await self._remove_index_entries(collection, previous)

        counter = replies[1]
        reply = CollectionReply(
            item=None,
            index=int(counter) if counter is not None else 0,
            length=int(replies[2]) - (1 if counter is not None else 0),
        )
        self._logger.info(
            "Item removed collection=%s id=%s length=%s", collection, previous.id, reply.length
        )
        return reply

    async def _remove_index_entries(self, collection: str, previous: RecordMetadata) -> None:
        pointers = record_pointers(previous.indexed_in)
        if not pointers:
            return
        try:
            owned = await owned_pointers(self._backend, pointers, previous.id)
            if not owned:
                return
            replies = await self._backend.execute(delete_pointers(self._backend.batch(), owned))
        except _BACKEND_ERRORS as exc:
            self._logger.warning(
                "Index cleanup failed collection=%s id=%s indexes=%s error=%s",
                collection,
                previous.id,
                sorted(previous.indexed_in),
                exc,
            )
            return
        if replies is None:
            self._logger.warning(
                "Index cleanup aborted collection=%s id=%s indexes=%s",
                collection,
                previous.id,
                sorted(previous.indexed_in),
            )

    async def remove_item_in_collection_by(
        self, collection: str, by_field: str, value: Any
    ) -> Result[CollectionReply, StoreError]:
        try:
            record_id = await self._indexed_reference(collection, by_field, value)
        except _LOOKUP_ERRORS:
            return Err(StoreError.COLLECTION_FIELD_INEXISTENT)
        result = await self.remove_item_in_collection(collection, record_id)
        if not result.ok:
            return Err(StoreError.COLLECTION_FIELD_INEXISTENT)
        return result

    @_operation(StoreError.COLLECTION_DELETION_FAILURE)
    async def remove_collection(self, collection: str) -> None:
        """Delete a whole collection together with its secondary index hashes."""
        namespaced = self._namespaced(collection)
        stored = await self._backend.hgetall(namespaced)
        index_hashes = set()
        for field, raw in stored.items():
            if field != COUNTER_FIELD:
                index_hashes.update(RecordMetadata.decode(raw).indexed_in)
        await self._backend.delete(namespaced, *sorted(index_hashes))
        self._logger.info("Collection removed collection=%s", collection)

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def get_collection_index(self, collection: str) -> int:
        """Return the id counter, or ``0`` for a collection never written."""
        counter = await self._backend.hget(self._namespaced(collection), COUNTER_FIELD)
        return int(counter) if counter is not None else 0

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def get_collection_length(self, collection: str) -> int:
        """Return the number of records, excluding the counter field."""
        namespaced = self._namespaced(collection)
        replies = await self._backend.execute(
            self._backend.batch().hlen(namespaced).hget(namespaced, COUNTER_FIELD)
        )
        if replies is None:
            raise StoreOperationError(StoreError.GENERIC_REDIS_FAILURE, "Length batch was aborted")
        size, counter = replies
        return int(size) - (1 if counter is not None else 0)

    # ------------------------------------------------------------------ #
    # Queues
    # ------------------------------------------------------------------ #

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def enqueue(self, queue: str, item: Any) -> None:
        """Append ``item`` to the queue tail in canonical (key-sorted) JSON."""
        await self._backend.rpush(to_queue_name(queue), _canonical_json(item))

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def dequeue(self, queue: str) -> Any:
        """Pop the queue head, or return ``None`` when the queue is empty."""
        raw = await self._backend.lpop(to_queue_name(queue))
        if raw is None:
            return None
        return json.loads(raw)

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def remove_from_queue(self, queue: str, item: Any) -> None:
        """
        Remove every queued entry structurally equal to ``item``.

        Key order does not matter at any nesting level.
        """
        removed = await self._backend.lrem(to_queue_name(queue), 0, _canonical_json(item))
        if removed <= 0:
            raise StoreOperationError(
                StoreError.QUEUE_ITEM_NOT_FOUND, f"Item not found in queue {queue!r}"
            )

    async def remove_from_queue_if_exists(self, queue: str, item: Any) -> Result[None, StoreError]:
        result = await self.remove_from_queue(queue, item)
        if not result.ok and result.error is StoreError.QUEUE_ITEM_NOT_FOUND:
            return Ok(None)
        return result

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def get_queue_size(self, queue: str) -> int:
        return await self._backend.llen(to_queue_name(queue))

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    @_operation(StoreError.GENERIC_REDIS_FAILURE)
    async def flush(self) -> None:
        """Wipe all backing data. Intended for tests and operations tooling."""
        await self._backend.flushall()

    async def close(self) -> None:
        """Close the backing store client."""
        await self._backend.aclose()
