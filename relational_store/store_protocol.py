"""
Adapter contracts consumed by :class:`relational_store.store.Store`.

The store depends on this method surface rather than on a specific client,
so the Redis adapter and the in-process memory adapter are interchangeable.
Command names and argument orders follow redis-py.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, Sequence

ReleaseCallback = Callable[[], Awaitable[None]]


class Batch(Protocol):
    """
    Queue of commands executed as one atomic unit.

    Every command method queues the command and returns the batch itself so
    calls can be chained. Replies are returned by :meth:`BackingStore.execute`
    in queue order.
    """

    def hget(self, name: str, key: str) -> "Batch": ...

    def hmget(self, name: str, keys: Sequence[str]) -> "Batch": ...

    def hset(self, name: str, key: str, value: str) -> "Batch": ...

    def hdel(self, name: str, *keys: str) -> "Batch": ...

    def hincrby(self, name: str, key: str, amount: int = 1) -> "Batch": ...

    def hlen(self, name: str) -> "Batch": ...

    def rpush(self, name: str, *values: str) -> "Batch": ...

    def lpop(self, name: str) -> "Batch": ...

    def lrem(self, name: str, count: int, value: str) -> "Batch": ...

    def llen(self, name: str) -> "Batch": ...

    def delete(self, *names: str) -> "Batch": ...


class BackingStore(Protocol):
    """
    Behavioral contract for the key-value store holding collections.

    String replies are returned as ``str`` (never ``bytes``). Failures are
    raised as :class:`relational_store.exceptions.BackingStoreError` or
    ``redis.RedisError``.
    """

    async def hget(self, name: str, key: str) -> str | None:
        """Return one hash field or ``None``."""

    async def hmget(self, name: str, keys: Sequence[str]) -> list[str | None]:
        """Return hash fields in request order, ``None`` for absent ones."""

    async def hgetall(self, name: str) -> dict[str, str]:
        """Return every field of a hash."""

    async def hset(self, name: str, key: str, value: str) -> int:
        """Set one hash field and return the number of new fields."""

    async def hdel(self, name: str, *keys: str) -> int:
        """Delete hash fields and return the number removed."""

    async def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        """Increment an integer hash field and return its new value."""

    async def hlen(self, name: str) -> int:
        """Return the number of fields in a hash."""

    async def delete(self, *names: str) -> int:
        """Delete whole keys and return the number removed."""

    async def rpush(self, name: str, *values: str) -> int:
        """Append to a list and return its new length."""

    async def lpop(self, name: str) -> str | None:
        """Pop the list head, or ``None`` when empty."""

    async def lrem(self, name: str, count: int, value: str) -> int:
        """Remove list entries equal to ``value`` (``count=0`` removes all)."""

    async def llen(self, name: str) -> int:
        """Return list length."""

    async def flushall(self) -> Any:
        """Wipe every key of the backing store."""

    async def aclose(self) -> None:
        """Release client connections."""

    def batch(self) -> Batch:
        """Return a new, empty atomic batch."""

    async def execute(self, batch: Batch) -> list[Any] | None:
        """
        Run a batch atomically.

        Returns the reply list, or ``None`` when the batch was aborted as a
        whole without running any command.
        """


class LockAdapter(Protocol):
    """
    Named mutual exclusion used to serialize writes.

    ``acquire`` suspends until the resource is free and returns the coroutine
    function that releases it. Distinct resource names never block each other.
    """

    async def acquire(self, resource: str) -> ReleaseCallback:
        """Block until ``resource`` is held and return its release callback."""
