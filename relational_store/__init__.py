"""
relational_store
================

Relational collections on top of a key-value store.

The package treats Redis hashes as typed collections of records and adds:

* record identity with an auto-incrementing per-collection counter
* one-to-one and one-to-many foreign keys, hydrated on read with one
  backing store round trip per relation depth
* secondary indexes kept consistent on update and removal
* FIFO queues of JSON values with structural (key-order free) removal
* named collection and item locks serializing concurrent writers

Every public store operation returns :class:`Ok` or :class:`Err`; failures
carry one :class:`StoreError` value.

Store switching can be done with one parameter:

    from relational_store import create_store

    store = create_store("memory")
    store = create_store("redis", namespace="app", redis_url="redis://127.0.0.1:6379/0")

Typical usage::

    from relational_store import create_store, one_to_many

    store = create_store("memory")
    await store.add_item_to_collection("guests", {"name": "Ada"}, "g5")
    reply = await store.add_item_to_collection(
        "peers",
        {"name": "Johnny", "user": {"g5": None}},
        index_by=["name"],
        foreign_keys={"user": one_to_many("guests")},
    )
    peer = reply.unwrap().item  # {"name": "Johnny", "user": {"g5": {...}}, "id": "1"}
"""

from .backends import StoreBackend, create_backend, create_store
from .config import RedisStoreConfig, StoreConfig
from .exceptions import (
    BackendConfigurationError,
    BackendNotAvailableError,
    BackingStoreError,
    RelationalStoreError,
    ResultUnwrapError,
    StoreError,
    StoreOperationError,
)
from .memory_backend import LocalLockAdapter, MemoryBackingStore
from .metadata import (
    ForeignKey,
    RecordMetadata,
    RelationKind,
    ResolvedRecord,
    one_to_many,
    one_to_one,
)
from .redis_backend import RedisBackingStore, RedisLockAdapter
from .resolution import ForeignKeyResolver
from .results import Err, Ok, Result, is_result
from .store import CollectionReply, Store
from .store_protocol import BackingStore, LockAdapter

__all__ = [
    "BackendConfigurationError",
    "BackendNotAvailableError",
    "BackingStore",
    "BackingStoreError",
    "CollectionReply",
    "Err",
    "ForeignKey",
    "ForeignKeyResolver",
    "LocalLockAdapter",
    "LockAdapter",
    "MemoryBackingStore",
    "Ok",
    "RecordMetadata",
    "RedisBackingStore",
    "RedisLockAdapter",
    "RedisStoreConfig",
    "RelationKind",
    "RelationalStoreError",
    "ResolvedRecord",
    "Result",
    "ResultUnwrapError",
    "Store",
    "StoreBackend",
    "StoreConfig",
    "StoreError",
    "StoreOperationError",
    "create_backend",
    "create_store",
    "is_result",
    "one_to_many",
    "one_to_one",
]
