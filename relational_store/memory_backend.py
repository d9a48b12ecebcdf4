"""
In-process backing store and lock adapter.

``MemoryBackingStore`` mirrors the subset of Redis hash/list semantics the
relational store relies on, so it can stand in for Redis in tests and local
development. Batches run atomically: either every queued command is applied
or the state is left untouched.
"""

from __future__ import annotations

import asyncio
from collections import Counter, deque
from copy import deepcopy
from typing import Any, Sequence

from .exceptions import BackingStoreError
from .store_protocol import ReleaseCallback

_WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


class MemoryBatch:
    """Command queue returned by :meth:`MemoryBackingStore.batch`."""

    def __init__(self) -> None:
        self.commands: list[tuple[str, tuple[Any, ...]]] = []

    def _queue(self, command: str, *args: Any) -> "MemoryBatch":
        self.commands.append((command, args))
        return self

    def hget(self, name: str, key: str) -> "MemoryBatch":
        return self._queue("hget", name, key)

    def hmget(self, name: str, keys: Sequence[str]) -> "MemoryBatch":
        return self._queue("hmget", name, list(keys))

    def hset(self, name: str, key: str, value: str) -> "MemoryBatch":
        return self._queue("hset", name, key, value)

    def hdel(self, name: str, *keys: str) -> "MemoryBatch":
        return self._queue("hdel", name, *keys)

    def hincrby(self, name: str, key: str, amount: int = 1) -> "MemoryBatch":
        return self._queue("hincrby", name, key, amount)

    def hlen(self, name: str) -> "MemoryBatch":
        return self._queue("hlen", name)

    def rpush(self, name: str, *values: str) -> "MemoryBatch":
        return self._queue("rpush", name, *values)

    def lpop(self, name: str) -> "MemoryBatch":
        return self._queue("lpop", name)

    def lrem(self, name: str, count: int, value: str) -> "MemoryBatch":
        return self._queue("lrem", name, count, value)

    def llen(self, name: str) -> "MemoryBatch":
        return self._queue("llen", name)

    def delete(self, *names: str) -> "MemoryBatch":
        return self._queue("delete", *names)

    def __len__(self) -> int:
        return len(self.commands)


class MemoryBackingStore:
    """
    Redis-like hash/list store held in process memory.

    Parameters
    ----------
    latency_seconds:
        Simulated round-trip latency. Every direct command and every batch
        execution suspends the caller for this long before touching state.

    Notes
    -----
    ``stats`` counts direct commands by name and batch executions under
    ``"execute"``; tests use it to assert round-trip counts.
    """

    def __init__(self, *, latency_seconds: float = 0.0) -> None:
        self.latency_seconds = float(latency_seconds)
        self.stats: Counter[str] = Counter()
        self._hashes: dict[str, dict[str, str]] = {}
        self._lists: dict[str, deque[str]] = {}

    # ------------------------------------------------------------------ #
    # Round trips
    # ------------------------------------------------------------------ #

    async def _round_trip(self, command: str) -> None:
        self.stats[command] += 1
        await asyncio.sleep(self.latency_seconds)

    async def _run(self, command: str, *args: Any) -> Any:
        await self._round_trip(command)
        return self._apply(command, args)

    def batch(self) -> MemoryBatch:
        return MemoryBatch()

    async def execute(self, batch: MemoryBatch) -> list[Any] | None:
        """
        Apply every queued command atomically and return replies in order.

        A failing command rolls the whole batch back and raises
        :class:`BackingStoreError`.
        """
        await self._round_trip("execute")
        hashes = deepcopy(self._hashes)
        lists = deepcopy(self._lists)
        replies = []
        try:
            for command, args in batch.commands:
                replies.append(self._apply(command, args))
        except BackingStoreError:
            self._hashes = hashes
            self._lists = lists
            raise
        return replies

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    async def hget(self, name: str, key: str) -> str | None:
        return await self._run("hget", name, key)

    async def hmget(self, name: str, keys: Sequence[str]) -> list[str | None]:
        return await self._run("hmget", name, list(keys))

    async def hgetall(self, name: str) -> dict[str, str]:
        return await self._run("hgetall", name)

    async def hset(self, name: str, key: str, value: str) -> int:
        return await self._run("hset", name, key, value)

    async def hdel(self, name: str, *keys: str) -> int:
        return await self._run("hdel", name, *keys)

    async def hincrby(self, name: str, key: str, amount: int = 1) -> int:
        return await self._run("hincrby", name, key, amount)

    async def hlen(self, name: str) -> int:
        return await self._run("hlen", name)

    async def delete(self, *names: str) -> int:
        return await self._run("delete", *names)

    async def rpush(self, name: str, *values: str) -> int:
        return await self._run("rpush", name, *values)

    async def lpop(self, name: str) -> str | None:
        return await self._run("lpop", name)

    async def lrem(self, name: str, count: int, value: str) -> int:
        return await self._run("lrem", name, count, value)

    async def llen(self, name: str) -> int:
        return await self._run("llen", name)

    async def flushall(self) -> bool:
        await self._round_trip("flushall")
        self._hashes.clear()
        self._lists.clear()
        return True

    async def aclose(self) -> None:
        return None

    # ------------------------------------------------------------------ #
    # State transitions
    # ------------------------------------------------------------------ #

    def _apply(self, command: str, args: tuple[Any, ...]) -> Any:
        handler = getattr(self, f"_cmd_{command}", None)
        if handler is None:
            raise BackingStoreError(f"Unknown command {command!r}")
        return handler(*args)

    def _hash(self, name: str, *, create: bool = False) -> dict[str, str] | None:
        if name in self._lists:
            raise BackingStoreError(_WRONGTYPE)
        if create:
            return self._hashes.setdefault(name, {})
        return self._hashes.get(name)

    def _list(self, name: str, *, create: bool = False) -> deque[str] | None:
        if name in self._hashes:
            raise BackingStoreError(_WRONGTYPE)
        if create:
            return self._lists.setdefault(name, deque())
        return self._lists.get(name)

    def _drop_if_empty(self, name: str) -> None:
        if not self._hashes.get(name, True):
            del self._hashes[name]
        if not self._lists.get(name, True):
            del self._lists[name]

    def _cmd_hget(self, name: str, key: str) -> str | None:
        return (self._hash(name) or {}).get(str(key))

    def _cmd_hmget(self, name: str, keys: list[str]) -> list[str | None]:
        mapping = self._hash(name) or {}
        return [mapping.get(str(key)) for key in keys]

    def _cmd_hgetall(self, name: str) -> dict[str, str]:
        return dict(self._hash(name) or {})

    def _cmd_hset(self, name: str, key: str, value: Any) -> int:
        mapping = self._hash(name, create=True)
        created = str(key) not in mapping
        mapping[str(key)] = str(value)
        return int(created)

    def _cmd_hdel(self, name: str, *keys: str) -> int:
        mapping = self._hash(name)
        if not mapping:
            return 0
        removed = 0
        for key in keys:
            if mapping.pop(str(key), None) is not None:
                removed += 1
        self._drop_if_empty(name)
        return removed

    def _cmd_hincrby(self, name: str, key: str, amount: int) -> int:
        mapping = self._hash(name, create=True)
        try:
            current = int(mapping.get(str(key), "0"))
        except ValueError as exc:
            raise BackingStoreError("ERR hash value is not an integer") from exc
        current += int(amount)
        mapping[str(key)] = str(current)
        return current

    def _cmd_hlen(self, name: str) -> int:
        return len(self._hash(name) or {})

    def _cmd_delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self._hashes.pop(name, None) is not None or self._lists.pop(name, None) is not None:
                removed += 1
        return removed

    def _cmd_rpush(self, name: str, *values: str) -> int:
        target = self._list(name, create=True)
        target.extend(str(value) for value in values)
        return len(target)

    def _cmd_lpop(self, name: str) -> str | None:
        target = self._list(name)
        if not target:
            return None
        value = target.popleft()
        self._drop_if_empty(name)
        return value

    def _cmd_lrem(self, name: str, count: int, value: str) -> int:
        target = self._list(name)
        if not target:
            return 0
        count = int(count)
        limit = abs(count) if count else len(target)
        values = list(target) if count >= 0 else list(reversed(target))
        kept: list[str] = []
        removed = 0
        for candidate in values:
            if candidate == value and removed < limit:
                removed += 1
                continue
            kept.append(candidate)
        if count < 0:
            kept.reverse()
        self._lists[name] = deque(kept)
        self._drop_if_empty(name)
        return removed

    def _cmd_llen(self, name: str) -> int:
        return len(self._list(name) or ())


class LocalLockAdapter:
    """
    Named locks for stores sharing one event loop.

    Waiters are served in arrival order. Locks are created on first use and
    discarded once no task holds or waits for them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    async def acquire(self, resource: str) -> ReleaseCallback:
        lock = self._locks.setdefault(resource, asyncio.Lock())
        self._users[resource] += 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(resource)
            raise
        released = False

        async def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            lock.release()
            self._forget(resource)

        return release

    def is_locked(self, resource: str) -> bool:
        lock = self._locks.get(resource)
        return lock is not None and lock.locked()

    def _forget(self, resource: str) -> None:
        self._users[resource] -= 1
        if self._users[resource] <= 0:
            del self._users[resource]
            self._locks.pop(resource, None)
