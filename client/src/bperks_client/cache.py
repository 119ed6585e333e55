"""Local cache for offline operation."""

import logging
import time
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .store import LocalStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

COLLECTIONS = (
    "users",
    "events",
    "participants",
    "rewards",
    "reports",
    "news",
    "claims",
    "transactions",
)


def now_ms() -> int:
    return int(time.time() * 1000)


class CacheEntry(BaseModel):
    """Cached payload with timestamp."""

    key: str
    payload: Any
    stored_at_ms: int


class LocalCache:
    """Manages cached collections and snapshots for offline operation.

    Each collection lives in its own namespace of the store under the key
    ``all``; ad-hoc snapshots (per-user records and the like) live in the
    ``cache`` namespace.
    """

    def __init__(self, store: LocalStore):
        self._store = store
        self._snapshots = store.namespace("cache")

    def _collection_store(self, name: str) -> LocalStore:
        return self._store.namespace(name)

    def _read_entry(self, store: LocalStore, key: str) -> CacheEntry | None:
        raw = store.get(key)
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate(raw)
        except ValidationError:
            logger.exception("Discarding malformed cache entry %r", key)
            return None

    def _write_entry(self, store: LocalStore, key: str, payload: Any) -> None:
        entry = CacheEntry(key=key, payload=payload, stored_at_ms=now_ms())
        store.set(key, entry.model_dump(mode="json"))

    def get_collection(self, name: str) -> list[dict[str, Any]]:
        """Load a cached collection. Returns an empty list if nothing is cached."""
        entry = self._read_entry(self._collection_store(name), "all")
        if entry is None or not isinstance(entry.payload, list):
            return []
        return entry.payload

    def set_collection(self, name: str, items: list[dict[str, Any]]) -> None:
        """Replace a cached collection wholesale."""
        self._write_entry(self._collection_store(name), "all", items)
        logger.debug("Saved %d %s to cache", len(items), name)

    def get_by_id(self, name: str, record_id: str) -> dict[str, Any] | None:
        for item in self.get_collection(name):
            if str(item.get("id")) == str(record_id):
                return item
        return None

    def load_models(self, name: str, model: type[ModelT]) -> list[ModelT]:
        """Load a collection as pydantic models, skipping entries that don't validate."""
        items: list[ModelT] = []
        for raw in self.get_collection(name):
            try:
                items.append(model.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping invalid %s entry %r", name, raw.get("id"))
        return items

    def save_models(self, name: str, items: list[BaseModel]) -> None:
        self.set_collection(name, [item.model_dump(mode="json") for item in items])

    def collection_timestamp(self, name: str) -> int | None:
        """When the collection was last written, in epoch milliseconds."""
        entry = self._read_entry(self._collection_store(name), "all")
        return entry.stored_at_ms if entry else None

    def cache_data(self, key: str, payload: Any) -> None:
        self._write_entry(self._snapshots, key, payload)

    def get_cached_data(self, key: str) -> Any | None:
        entry = self._read_entry(self._snapshots, key)
        return entry.payload if entry else None

    def cache_user_data(self, user_id: str, user_data: dict[str, Any]) -> None:
        self.cache_data(f"user_{user_id}", user_data)

    def get_cached_user_data(self, user_id: str) -> dict[str, Any] | None:
        return self.get_cached_data(f"user_{user_id}")

    def cache_size(self) -> int:
        """Number of cached snapshots and non-empty collections."""
        populated = sum(1 for name in COLLECTIONS if self.get_collection(name))
        return populated + len(self._snapshots.keys())

    def clear(self) -> None:
        for name in COLLECTIONS:
            self._collection_store(name).clear()
        self._snapshots.clear()
        logger.info("Cleared local cache")
