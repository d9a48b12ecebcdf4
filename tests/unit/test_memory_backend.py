"""
In-memory backing store semantics.
"""

from __future__ import annotations

import unittest

from relational_store import BackingStoreError, MemoryBackingStore


class MemoryBackingStoreTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.backend = MemoryBackingStore()

    async def test_batch_replies_in_order(self) -> None:
        batch = (
            self.backend.batch()
            .hset("peers", "p1", "{}")
            .hincrby("peers", "_index", 1)
            .hlen("peers")
            .hget("peers", "p1")
            .hmget("peers", ["p1", "p2"])
        )

        replies = await self.backend.execute(batch)

        self.assertEqual(replies, [1, 1, 2, "{}", ["{}", None]])
        self.assertEqual(self.backend.stats["execute"], 1)
        self.assertEqual(len(batch), 5)

    async def test_failing_batch_rolls_back(self) -> None:
        await self.backend.rpush("jobs", "a")
        batch = self.backend.batch().hset("peers", "p1", "{}").hset("jobs", "x", "y")

        with self.assertRaises(BackingStoreError):
            await self.backend.execute(batch)

        self.assertEqual(await self.backend.hgetall("peers"), {})
        self.assertEqual(await self.backend.llen("jobs"), 1)

    async def test_non_integer_increment(self) -> None:
        await self.backend.hset("peers", "_index", "abc")

        with self.assertRaises(BackingStoreError):
            await self.backend.hincrby("peers", "_index", 1)

    async def test_empty_keys_disappear(self) -> None:
        await self.backend.hset("peers", "p1", "{}")
        await self.backend.hdel("peers", "p1")
        await self.backend.rpush("jobs", "a")
        await self.backend.lpop("jobs")

        self.assertEqual(await self.backend.delete("peers", "jobs"), 0)
        # A drained list no longer blocks hash commands on its key.
        self.assertEqual(await self.backend.hset("jobs", "x", "y"), 1)

    async def test_lrem_counts(self) -> None:
        await self.backend.rpush("jobs", "a", "b", "a", "c", "a")

        self.assertEqual(await self.backend.lrem("jobs", 1, "a"), 1)
        self.assertEqual(await self.backend.lrem("jobs", -1, "a"), 1)
        self.assertEqual(await self.backend.lpop("jobs"), "b")
        self.assertEqual(await self.backend.lrem("jobs", 0, "a"), 1)
        self.assertEqual(await self.backend.llen("jobs"), 1)
        self.assertEqual(await self.backend.lrem("jobs", 0, "zzz"), 0)

    async def test_stats_count_direct_commands(self) -> None:
        await self.backend.hget("peers", "p1")
        await self.backend.hmget("peers", ["p1"])
        await self.backend.flushall()

        self.assertEqual(dict(self.backend.stats), {"hget": 1, "hmget": 1, "flushall": 1})


if __name__ == "__main__":
    unittest.main()
