"""
Build stores from a backing store name.

Applications name the backing store (``"memory"`` or ``"redis"``) plus its
options, and get back a :class:`Store` wired to matching lock adapters.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from .config import RedisStoreConfig, StoreConfig
from .exceptions import BackendConfigurationError, BackendNotAvailableError
from .memory_backend import LocalLockAdapter, MemoryBackingStore
from .store import Store
from .store_protocol import BackingStore, LockAdapter


class StoreBackend(str, Enum):
    """
    Backing store kinds accepted by :func:`create_backend`.

    MEMORY
        Collections held in this process; locks only serialize tasks of one
        event loop.
    REDIS
        Collections held on a Redis server; locks are Redis leases shared by
        every process using that server.
    """

    MEMORY = "memory"
    REDIS = "redis"


def _select_backend(backend: str | StoreBackend) -> StoreBackend:
    """Resolve a backend selector, ignoring case and surrounding blanks."""
    if isinstance(backend, StoreBackend):
        return backend
    try:
        return StoreBackend(str(backend).strip().lower())
    except ValueError as exc:
        choices = ", ".join(kind.value for kind in StoreBackend)
        raise BackendConfigurationError(
            f"No backing store named {backend!r}; choose one of: {choices}."
        ) from exc


def _reject_unknown(label: str, options: dict[str, Any]) -> None:
    if options:
        unknown = ", ".join(sorted(str(key) for key in options))
        raise BackendConfigurationError(f"Unknown {label} backend options: {unknown}.")


def create_backend(
    backend: str | StoreBackend = StoreBackend.MEMORY,
    **backend_options: Any,
) -> tuple[BackingStore, LockAdapter]:
    """
    Create a backing store and its lock adapter from a short backend name.

    Parameters
    ----------
    backend:
        Backend selector string (``"memory"`` or ``"redis"``).
    backend_options:
        Backend-specific options.

        Memory options:
            ``latency_seconds`` (float).

        Redis options:
            ``redis_url`` (str), ``redis_client``, lock timing fields of
            :class:`RedisStoreConfig`, or a ready ``config`` object.
    """
    selected = _select_backend(backend)
    if selected is StoreBackend.MEMORY:
        latency = float(backend_options.pop("latency_seconds", 0.0))
        _reject_unknown("memory", backend_options)
        return MemoryBackingStore(latency_seconds=latency), LocalLockAdapter()
    if selected is StoreBackend.REDIS:
        try:
            from .redis_backend import RedisBackingStore, RedisLockAdapter
        except ImportError as exc:
            raise BackendNotAvailableError(
                "Redis backend requires the 'redis' package with asyncio support."
            ) from exc

        config = backend_options.pop("config", None)
        redis_client = backend_options.pop("redis_client", None)
        if config is None:
            fields = {
                name: backend_options.pop(name)
                for name in (
                    "redis_url",
                    "lock_timeout_seconds",
                    "lock_sleep_seconds",
                    "lock_blocking_timeout_seconds",
                )
                if name in backend_options
            }
            try:
                config = RedisStoreConfig(**fields)
            except ValueError as exc:
                raise BackendConfigurationError(str(exc)) from exc
        _reject_unknown("Redis", backend_options)
        store = RedisBackingStore(config=config, redis_client=redis_client)
        return store, RedisLockAdapter(store.client, config)
    raise BackendConfigurationError(f"Unhandled backend: {selected!r}")


def create_store(
    backend: str | StoreBackend = StoreBackend.MEMORY,
    *,
    namespace: str | None = None,
    logger: logging.Logger | None = None,
    **backend_options: Any,
) -> Store:
    """
    Return a :class:`Store` over the named backing store.

    ``namespace`` and ``logger`` configure the store; every other keyword
    goes to :func:`create_backend`::

        store = create_store("redis", namespace="app", redis_url="redis://cache:6379/0")
    """
    backing_store, locks = create_backend(backend, **backend_options)
    config = StoreConfig(namespace=namespace)
    if logger is not None:
        config.logger = logger
    return Store(backing_store, locks, config)
