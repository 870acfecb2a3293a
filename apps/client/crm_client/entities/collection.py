from __future__ import annotations

from collections.abc import Iterator
from typing import Any


Entity = dict[str, Any]


class EntityCollection:
    """Ordered in-memory entities of one type, newest first, at most one per id."""

    def __init__(self, entities: list[Entity] | None = None) -> None:
        self._items: list[Entity] = []
        for entity in entities or []:
            self._items.append(entity)
        self._dedupe()

    def __iter__(self) -> Iterator[Entity]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, entity_id: object) -> bool:
        return self.index_of(entity_id) is not None

    @property
    def ids(self) -> list[str]:
        return [str(entity["id"]) for entity in self._items]

    def index_of(self, entity_id: object) -> int | None:
        for index, entity in enumerate(self._items):
            if entity.get("id") == entity_id:
                return index
        return None

    def get(self, entity_id: str) -> Entity | None:
        index = self.index_of(entity_id)
        return self._items[index] if index is not None else None

    def upsert(self, entity: Entity) -> None:
        """Insert or update ``entity`` and move it to the front."""
        self.remove(entity["id"])
        self._items.insert(0, entity)

    def replace(self, entity_id: str, entity: Entity) -> None:
        """Swap the entry for ``entity_id`` with ``entity`` in place.

        If ``entity`` carries a different id that is already present, that
        entry is dropped so the collection keeps one entity per id.
        """
        index = self.index_of(entity_id)
        if index is None:
            self.upsert(entity)
            return
        new_id = entity["id"]
        if new_id != entity_id:
            duplicate = self.index_of(new_id)
            if duplicate is not None:
                del self._items[duplicate]
                if duplicate < index:
                    index -= 1
        self._items[index] = entity

    def insert(self, index: int, entity: Entity) -> None:
        self.remove(entity["id"])
        self._items.insert(min(max(index, 0), len(self._items)), entity)

    def remove(self, entity_id: str) -> Entity | None:
        index = self.index_of(entity_id)
        if index is None:
            return None
        return self._items.pop(index)

    def reset(self, entities: list[Entity]) -> None:
        self._items = list(entities)
        self._dedupe()

    def clear(self) -> None:
        self._items = []

    def snapshot(self) -> list[Entity]:
        return [dict(entity) for entity in self._items]

    def _dedupe(self) -> None:
        seen: set[Any] = set()
        unique: list[Entity] = []
        for entity in self._items:
            if entity.get("id") in seen:
                continue
            seen.add(entity.get("id"))
            unique.append(entity)
        self._items = unique
