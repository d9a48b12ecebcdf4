"""
Shared fixtures for relational store unit tests.
"""

from __future__ import annotations

import logging

from relational_store import (
    LocalLockAdapter,
    MemoryBackingStore,
    Store,
    StoreConfig,
    one_to_many,
    one_to_one,
)


def silent_logger(name: str = "relational_store.tests") -> logging.Logger:
    """
    Return a logger that drops every record.

    ``assertLogs`` still captures records because it attaches its own handler
    directly to the logger.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(handler, logging.NullHandler) for handler in logger.handlers):
        logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def make_store(
    *,
    namespace: str | None = None,
    latency_seconds: float = 0.0,
    backend: MemoryBackingStore | None = None,
    locks: LocalLockAdapter | None = None,
) -> tuple[Store, MemoryBackingStore, LocalLockAdapter]:
    """Build a memory-backed store and return it with its adapters."""
    backend = backend or MemoryBackingStore(latency_seconds=latency_seconds)
    locks = locks or LocalLockAdapter()
    config = StoreConfig(namespace=namespace, logger=silent_logger())
    return Store(backend, locks, config), backend, locks


PEER_KEYS = {"user": one_to_many("guests")}
ROOM_KEYS = {"peers": one_to_many("peers")}
USER_KEYS = {"friend": one_to_one("users")}

TRAVOLTA = {"avatarId": "12", "name": "Travolta", "isGuest": True}


async def seed_guests(store: Store, count: int = 3) -> None:
    """Add guests ``g5``, ``g6``... with distinct names."""
    for offset in range(count):
        guest_id = f"g{5 + offset}"
        value = dict(TRAVOLTA) if offset == 0 else {"name": f"Guest {guest_id}", "isGuest": True}
        (await store.add_item_to_collection("guests", value, guest_id)).unwrap()


async def seed_peers(store: Store) -> None:
    """
    Add peers ``p2``..``p4``, each pointing at guests.

    ``p2`` and ``p4`` share guest ``g6``.
    """
    await seed_guests(store)
    peers = {
        "p2": {"name": "Mia", "user": {"g6": None}},
        "p3": {"name": "Johnny", "user": {"g5": None}},
        "p4": {"name": "Vincent", "user": {"g6": None, "g7": None}},
    }
    for peer_id, value in peers.items():
        (
            await store.add_item_to_collection(
                "peers", value, peer_id, index_by=["name"], foreign_keys=PEER_KEYS
            )
        ).unwrap()
