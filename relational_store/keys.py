"""
Key and field naming for the persisted layout.

* collection hash: ``<prefix><collection>`` with one field per record id
* reserved counter field: ``_index``
* secondary index hash: ``<prefix><collection>:by:<field>``
* queue list: ``queue:<queue>``
* lock resources: ``locked:<prefix><collection>[:<id>]``
"""

from __future__ import annotations

COUNTER_FIELD = "_index"
INDEX_SEPARATOR = ":by:"
QUEUE_PREFIX = "queue:"
LOCK_PREFIX = "locked:"


def to_collection_field(collection: str, record_id: str) -> str:
    """Return the hash field holding ``record_id`` inside ``collection``."""
    return str(record_id)


def to_queue_name(queue: str) -> str:
    return f"{QUEUE_PREFIX}{queue}"


def to_indexed_collection_name(collection: str, by_field: str) -> str:
    return f"{collection}{INDEX_SEPARATOR}{by_field}"


def field_from_indexed_collection(indexed_collection: str) -> str:
    """Return the value field an index hash name was derived from."""
    return indexed_collection.split(INDEX_SEPARATOR, 1)[1]


def collection_lock_name(namespaced_collection: str) -> str:
    return f"{LOCK_PREFIX}{namespaced_collection}"


def item_lock_name(namespaced_collection: str, record_id: str) -> str:
    return f"{LOCK_PREFIX}{namespaced_collection}:{record_id}"
