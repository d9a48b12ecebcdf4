"""
Configuration models for relational stores.

This module centralizes the tunable settings used by :class:`Store` and the
Redis adapters:

* key namespacing for collections, indexes and locks
* the injected logger used for operation events
* Redis connection URL and distributed lock timing
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

NAMESPACE_SEPARATOR = "::"


@dataclass(slots=True)
class StoreConfig:
    """
    Top-level runtime configuration used by :class:`relational_store.Store`.

    Parameters
    ----------
    namespace:
        Optional prefix for every collection key. Two stores with different
        namespaces on one backing store never see each other's collections.
    logger:
        Logger receiving operation events. Defaults to the package logger;
        pass a logger with a ``NullHandler`` to silence a store in tests.
    """

    namespace: str | None = None
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("relational_store.store")
    )

    def __post_init__(self) -> None:
        """Validate namespace value at construction time."""
        if self.namespace is not None and not self.namespace.strip():
            raise ValueError("StoreConfig.namespace cannot be blank when provided.")

    @property
    def prefix(self) -> str:
        """
        Return the string prepended to collection names.

        Returns
        -------
        str
            ``"<namespace>::"`` or an empty string when no namespace is set.
        """
        if not self.namespace:
            return ""
        return f"{self.namespace}{NAMESPACE_SEPARATOR}"


@dataclass(slots=True)
class RedisStoreConfig:
    """
    Configuration for :class:`relational_store.redis_backend.RedisBackingStore`.

    Parameters
    ----------
    redis_url:
        Redis connection URL used when a client is not directly supplied.
    lock_timeout_seconds:
        Lease of a held collection/item lock. A crashed holder frees the lock
        after this many seconds.
    lock_sleep_seconds:
        Poll interval used while waiting for a busy lock.
    lock_blocking_timeout_seconds:
        Maximum wait for a busy lock, or ``None`` to wait indefinitely.
    """

    redis_url: str = "redis://127.0.0.1:6379/0"
    lock_timeout_seconds: float = 30.0
    lock_sleep_seconds: float = 0.01
    lock_blocking_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        """Validate lock timing values that affect runtime safety."""
        if not self.redis_url:
            raise ValueError("RedisStoreConfig.redis_url must be non-empty.")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("RedisStoreConfig.lock_timeout_seconds must be > 0.")
        if self.lock_sleep_seconds <= 0:
            raise ValueError("RedisStoreConfig.lock_sleep_seconds must be > 0.")
        blocking = self.lock_blocking_timeout_seconds
        if blocking is not None and blocking <= 0:
            raise ValueError(
                "RedisStoreConfig.lock_blocking_timeout_seconds must be > 0 when provided."
            )
