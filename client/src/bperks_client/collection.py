"""Typed, id-keyed view over a cached collection."""

import uuid
from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

from bperks_shared import Record

from .cache import LocalCache
from .errors import DuplicateRecordError, RecordNotFoundError

RecordT = TypeVar("RecordT", bound=Record)


def new_record_id() -> str:
    """Client-generated id for records created on this device."""
    return uuid.uuid4().hex


class Collection(Generic[RecordT]):
    """Ordered map of records keyed by id.

    Loaded from the cache on construction; ``save()`` writes the whole
    collection back. Insertion order is preserved.
    """

    def __init__(self, cache: LocalCache, name: str, model: type[RecordT]):
        self._cache = cache
        self._name = name
        self._model = model
        self._items: dict[str, RecordT] = {}
        for item in cache.load_models(name, model):
            # Keep the first occurrence if a stale cache has duplicates
            self._items.setdefault(item.id, item)

    @property
    def name(self) -> str:
        return self._name

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[RecordT]:
        return iter(list(self._items.values()))

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._items

    def get(self, record_id: str) -> RecordT | None:
        return self._items.get(str(record_id))

    def require(self, record_id: str) -> RecordT:
        item = self.get(record_id)
        if item is None:
            raise RecordNotFoundError(f"{self._name} {record_id} not found")
        return item

    def add(self, item: RecordT) -> RecordT:
        if item.id in self._items:
            raise DuplicateRecordError(f"{self._name} {item.id} already exists")
        self._items[item.id] = item
        return item

    def replace(self, item: RecordT) -> RecordT:
        if item.id not in self._items:
            raise RecordNotFoundError(f"{self._name} {item.id} not found")
        self._items[item.id] = item
        return item

    def update(self, record_id: str, **changes: object) -> RecordT:
        """Apply field changes to a record, re-validating the result."""
        current = self.require(record_id)
        updated = self._model.model_validate({**current.model_dump(), **changes})
        return self.replace(updated)

    def remove(self, record_id: str) -> None:
        self._items.pop(str(record_id), None)

    def find(self, predicate: Callable[[RecordT], bool]) -> RecordT | None:
        return next((item for item in self._items.values() if predicate(item)), None)

    def filter(self, predicate: Callable[[RecordT], bool]) -> list[RecordT]:
        return [item for item in self._items.values() if predicate(item)]

    def save(self) -> None:
        self._cache.save_models(self._name, list(self._items.values()))
