"""
Error taxonomy and exceptions used by the relational store.

Public store operations never raise for expected failures: they return an
``Err`` carrying one :class:`StoreError` value. Internally, helpers raise
:class:`StoreOperationError` and the operation boundary maps it back into a
result, so every failure reaching a caller is one of the taxonomy values.
"""

from __future__ import annotations

from enum import Enum


class StoreError(str, Enum):
    """
    Failure outcomes surfaced by store operations.

    The string values are part of the public contract and match the values
    used by other clients of the same persisted layout.
    """

    COLLECTION_FIELD_INEXISTENT = "CollectionFieldInexistent"
    COLLECTION_ADDITION_FAILURE = "CollectionAdditionFailure"
    COLLECTION_DELETION_FAILURE = "CollectionDeletionFailure"
    COLLECTION_UPDATE_FAILURE = "CollectionUpdateFailure"
    COLLECTION_UPDATE_MISMATCHING_FOREIGN_KEYS = "CollectionUpdateFailure:MismatchingForeignKeys"
    COLLECTION_OR_FIELD_INEXISTENT = "CollectionOrFieldInexistent"
    QUEUE_ITEM_NOT_FOUND = "QueueItemNotFound"
    GENERIC_REDIS_FAILURE = "GenericRedisFailure"

    def __str__(self) -> str:
        return self.value


class RelationalStoreError(Exception):
    """Base error type for all library-level exceptions."""


class StoreOperationError(RelationalStoreError):
    """
    Raised inside store internals to abort an operation with a taxonomy code.

    The public operation catching it returns ``Err(code)`` after releasing any
    lock it holds.
    """

    def __init__(self, code: StoreError, message: str | None = None) -> None:
        self.code = code
        super().__init__(message or code.value)


class BackingStoreError(RelationalStoreError):
    """
    Raised by a backing store adapter when a command or batch cannot run.

    Redis-backed adapters raise ``redis.RedisError`` subclasses instead; both
    are mapped to taxonomy values by the store.
    """


class BackendConfigurationError(RelationalStoreError):
    """
    Raised when a backend selector or backend option is invalid.
    """


class BackendNotAvailableError(RelationalStoreError):
    """
    Raised when a selected backend needs a client library that is missing.
    """


class ResultUnwrapError(RelationalStoreError):
    """
    Raised when ``unwrap`` is called on an ``Err`` result.
    """
