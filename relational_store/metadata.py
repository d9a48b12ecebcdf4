"""
Record metadata codec and the resolved record tree.

Every record is persisted as one JSON envelope::

    {"val": {...}, "id": "p3",
     "foreignKeys": {"user": {"type": "oneToMany", "collection": "guests"}},
     "indexedIn": {"peers:by:name": "Johnny"}}

``foreignKeys`` and ``indexedIn`` are only written when non-empty. Foreign-key
fields inside ``val`` hold either one foreign id (one-to-one) or a mapping of
foreign id to ``null`` (one-to-many).
"""

from __future__ import annotations

import json
from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class RelationKind(str, Enum):
    """
    Foreign-key relation shapes.

    ONE_TO_ONE
        The value field holds a single foreign id.
    ONE_TO_MANY
        The value field holds ``{foreign_id: None, ...}``.
    """

    ONE_TO_ONE = "oneToOne"
    ONE_TO_MANY = "oneToMany"


@dataclass(frozen=True, slots=True)
class ForeignKey:
    """
    Declaration relating one value field to records of another collection.

    Parameters
    ----------
    kind:
        One-to-one or one-to-many relation.
    collection:
        Target collection name, without namespace prefix.
    """

    kind: RelationKind
    collection: str

    def as_dict(self) -> dict[str, str]:
        """Convert the declaration into its persisted dictionary form."""
        return {"type": self.kind.value, "collection": self.collection}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ForeignKey":
        """
        Create a declaration from ``{"type": ..., "collection": ...}``.

        Raises
        ------
        ValueError
            If the relation type is unknown or the collection is missing.
        """
        try:
            kind = RelationKind(str(payload["type"]))
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown foreign key relation: {payload!r}") from exc
        collection = payload.get("collection")
        if not collection:
            raise ValueError(f"Foreign key declaration without collection: {payload!r}")
        return cls(kind=kind, collection=str(collection))


def one_to_one(collection: str) -> ForeignKey:
    return ForeignKey(RelationKind.ONE_TO_ONE, collection)


def one_to_many(collection: str) -> ForeignKey:
    return ForeignKey(RelationKind.ONE_TO_MANY, collection)


def normalize_foreign_keys(
    foreign_keys: Mapping[str, ForeignKey | Mapping[str, Any]] | None,
) -> dict[str, ForeignKey]:
    """Return caller-declared foreign keys as ``{field: ForeignKey}``."""
    normalized: dict[str, ForeignKey] = {}
    for name, declaration in (foreign_keys or {}).items():
        if isinstance(declaration, ForeignKey):
            normalized[str(name)] = declaration
        else:
            normalized[str(name)] = ForeignKey.from_dict(declaration)
    return normalized


@dataclass(slots=True)
class RecordMetadata:
    """
    Stored unit of one collection record.

    Parameters
    ----------
    id:
        Record identity, unique within its collection.
    value:
        Caller payload without the ``id`` field.
    foreign_keys:
        Immutable foreign-key declarations, keyed by value field.
    indexed_in:
        Index hash name mapped to the value currently indexed there.
    """

    id: str
    value: dict[str, Any]
    foreign_keys: dict[str, ForeignKey] = field(default_factory=dict)
    indexed_in: dict[str, Any] = field(default_factory=dict)

    def encode(self) -> str:
        payload: dict[str, Any] = {"val": self.value, "id": self.id}
        if self.foreign_keys:
            payload["foreignKeys"] = {
                name: declaration.as_dict()
                for name, declaration in self.foreign_keys.items()
            }
        if self.indexed_in:
            payload["indexedIn"] = self.indexed_in
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def decode(cls, raw: str | bytes) -> "RecordMetadata":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
        return cls(
            id=str(payload["id"]),
            value=dict(payload.get("val") or {}),
            foreign_keys=normalize_foreign_keys(payload.get("foreignKeys")),
            indexed_in=dict(payload.get("indexedIn") or {}),
        )

    def foreign_ids(self, name: str) -> list[str]:
        """
        Return foreign ids referenced by value field ``name``.

        One-to-one fields yield their single id (none when the field is unset);
        one-to-many fields yield every key of their id mapping, in order.
        """
        declaration = self.foreign_keys[name]
        raw = self.value.get(name)
        if raw is None:
            return []
        if declaration.kind is RelationKind.ONE_TO_MANY:
            return [str(foreign_id) for foreign_id in raw]
        return [str(raw)]

    def foreign_keys_as_dict(self) -> dict[str, dict[str, str]]:
        return {name: declaration.as_dict() for name, declaration in self.foreign_keys.items()}


@dataclass(slots=True)
class ResolvedRecord:
    """
    Record metadata with every foreign reference replaced by its target.

    ``one_to_one`` maps a field to one resolved target and ``one_to_many`` maps
    a field to ``{id: target}``. Either holds ``None`` when the stored field is
    ``None``; fields absent from the value are absent here too.
    A target reached again through a reference cycle is attached without its
    own foreign items.
    """

    metadata: RecordMetadata
    one_to_one: dict[str, "ResolvedRecord | None"] = field(default_factory=dict)
    one_to_many: dict[str, "dict[str, ResolvedRecord] | None"] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.metadata.id

    def to_item(self) -> dict[str, Any]:
        """
        Flatten the tree into the caller-visible record.

        Foreign fields become nested records (one-to-one) or id-keyed mappings
        of nested records (one-to-many); ``id`` is set last.
        """
        item = deepcopy(self.metadata.value)
        for name, targets in self.one_to_many.items():
            item[name] = (
                None
                if targets is None
                else {foreign_id: target.to_item() for foreign_id, target in targets.items()}
            )
        for name, target in self.one_to_one.items():
            item[name] = target.to_item() if target is not None else None
        item["id"] = self.metadata.id
        return item
