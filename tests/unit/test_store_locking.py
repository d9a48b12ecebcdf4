"""
Write serialization, namespacing and reference cycle tests.
"""

from __future__ import annotations

import asyncio
import unittest

from helpers import PEER_KEYS, USER_KEYS, make_store, seed_peers

from relational_store import Err, LocalLockAdapter, MemoryBackingStore, Ok, StoreError


class LockingTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store, self.backend, self.locks = make_store()
        await self.store.add_item_to_collection("counters", {"log": []}, "c1")

    async def test_updates_apply_in_lock_order(self) -> None:
        """
        A slow update started first still lands before a fast one started later.
        """

        async def slow(previous):
            await asyncio.sleep(0.05)
            return {"log": previous["log"] + ["slow"]}

        def fast(previous):
            return {"log": previous["log"] + ["fast"]}

        results = await asyncio.gather(
            self.store.update_item_in_collection("counters", "c1", slow),
            self.store.update_item_in_collection("counters", "c1", fast),
        )

        self.assertEqual(results[0].unwrap()["log"], ["slow"])
        self.assertEqual(results[1].unwrap()["log"], ["slow", "fast"])
        self.assertEqual(
            (await self.store.get_item_in_collection("counters", "c1")).unwrap()["log"],
            ["slow", "fast"],
        )

    async def test_failed_update_releases_item_lock(self) -> None:
        await seed_peers(self.store)

        mismatch = await self.store.update_item_in_collection("peers", "p3", {"name": "Vega"})
        self.assertEqual(mismatch, Err(StoreError.COLLECTION_UPDATE_MISMATCHING_FOREIGN_KEYS))
        self.assertFalse(self.locks.is_locked("locked:peers:p3"))

        retried = await asyncio.wait_for(
            self.store.update_item_in_collection(
                "peers", "p3", {"name": "Vega"}, foreign_keys=PEER_KEYS
            ),
            timeout=1.0,
        )
        self.assertTrue(retried.ok)

    async def test_distinct_items_do_not_block_each_other(self) -> None:
        await self.store.add_item_to_collection("counters", {"log": []}, "c2")

        async with self.store.lock_collection_item("counters", "c1"):
            updated = await asyncio.wait_for(
                self.store.update_item_in_collection("counters", "c2", {"log": ["x"]}),
                timeout=1.0,
            )

        self.assertEqual(updated.unwrap()["log"], ["x"])

    async def test_held_collection_lock_blocks_additions(self) -> None:
        async with self.store.lock_collection("counters"):
            pending = asyncio.create_task(
                self.store.add_item_to_collection("counters", {"log": []})
            )
            await asyncio.sleep(0.02)
            self.assertFalse(pending.done())

        reply = (await pending).unwrap()
        self.assertEqual(reply.item["id"], "2")

    async def test_lock_released_when_body_raises(self) -> None:
        with self.assertRaises(RuntimeError):
            async with self.store.lock_collection_item("counters", "c1"):
                raise RuntimeError("boom")

        self.assertFalse(self.locks.is_locked("locked:counters:c1"))


class LocalLockAdapterTest(unittest.IsolatedAsyncioTestCase):
    async def test_waiters_are_served_in_arrival_order(self) -> None:
        locks = LocalLockAdapter()
        order = []
        release = await locks.acquire("r")

        async def waiter(name):
            release_waiter = await locks.acquire("r")
            order.append(name)
            await release_waiter()

        tasks = [asyncio.create_task(waiter(name)) for name in ("a", "b", "c")]
        await asyncio.sleep(0)
        await release()
        await asyncio.gather(*tasks)

        self.assertEqual(order, ["a", "b", "c"])
        self.assertFalse(locks.is_locked("r"))

    async def test_release_is_idempotent(self) -> None:
        locks = LocalLockAdapter()
        release = await locks.acquire("r")
        await release()
        await release()

        second = await asyncio.wait_for(locks.acquire("r"), timeout=1.0)
        self.assertTrue(locks.is_locked("r"))
        await second()


class NamespaceTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        backend = MemoryBackingStore()
        locks = LocalLockAdapter()
        self.first, self.backend, self.locks = make_store(namespace="a", backend=backend, locks=locks)
        self.second, _, _ = make_store(namespace="b", backend=backend, locks=locks)

    async def test_namespaces_isolate_collections(self) -> None:
        await self.first.add_item_to_collection("peers", {"name": "Mia"}, "p1", index_by=["name"])

        self.assertEqual(
            await self.second.get_item_in_collection("peers", "p1"),
            Err(StoreError.COLLECTION_FIELD_INEXISTENT),
        )
        self.assertEqual(await self.second.get_collection_length("peers"), Ok(0))
        self.assertIn("p1", await self.backend.hgetall("a::peers"))
        self.assertEqual(await self.backend.hgetall("a::peers:by:name"), {"Mia": "p1"})

    async def test_foreign_keys_resolve_inside_namespace(self) -> None:
        await seed_peers(self.first)

        peer = (await self.first.get_item_in_collection("peers", "p3")).unwrap()

        self.assertEqual(peer["user"]["g5"]["name"], "Travolta")
        self.assertEqual(await self.backend.hgetall("guests"), {})

    async def test_lock_names_carry_namespace(self) -> None:
        async with self.first.lock_collection_item("peers", "p1"):
            self.assertTrue(self.locks.is_locked("locked:a::peers:p1"))
            self.assertFalse(self.locks.is_locked("locked:b::peers:p1"))


class ReferenceCycleTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store, self.backend, _ = make_store()
        await self.store.add_item_to_collection(
            "users", {"name": "Jules", "friend": None}, "u1", foreign_keys=USER_KEYS
        )
        await self.store.add_item_to_collection(
            "users", {"name": "Vincent", "friend": "u1"}, "u2", foreign_keys=USER_KEYS
        )
        await self.store.update_item_in_collection(
            "users", "u1", {"friend": "u2"}, foreign_keys=USER_KEYS
        )

    async def test_cycle_terminates_with_shallow_repeat(self) -> None:
        self.backend.stats.clear()

        user = (await self.store.get_item_in_collection("users", "u1")).unwrap()

        self.assertEqual(
            user,
            {
                "id": "u1",
                "name": "Jules",
                "friend": {
                    "id": "u2",
                    "name": "Vincent",
                    "friend": {"id": "u1", "name": "Jules", "friend": "u2"},
                },
            },
        )
        self.assertEqual(self.backend.stats["execute"], 1)

    async def test_self_reference(self) -> None:
        await self.store.add_item_to_collection(
            "users", {"name": "Mia", "friend": "u3"}, "u3", foreign_keys=USER_KEYS
        )

        user = (await self.store.get_item_in_collection("users", "u3")).unwrap()

        self.assertEqual(user["friend"], {"id": "u3", "name": "Mia", "friend": "u3"})


if __name__ == "__main__":
    unittest.main()
