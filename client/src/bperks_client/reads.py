"""Refreshing cached collections from the API."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from bperks_shared import SyncState
from bperks_shared.wire import wire_to_dict

from .cache import LocalCache
from .transport import CACHE_HEADER

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "users": "/api/users",
    "events": "/api/events",
    "rewards": "/api/rewards",
    "reports": "/api/reports",
    "news": "/api/news",
    "claims": "/api/reward-claims",
}


@dataclass
class ReadResult:
    """A collection as the UI should show it."""

    data: list[dict[str, Any]] = field(default_factory=list)
    offline: bool = False


class CollectionReader:
    """Network-first reads with the local cache as fallback.

    A fresh server copy replaces the cached collection, except that records
    still waiting to sync are kept in their local form.
    """

    def __init__(self, client: httpx.Client, cache: LocalCache):
        self._client = client
        self._cache = cache

    def refresh(self, name: str, endpoint: str | None = None) -> ReadResult:
        cached = self._cache.get_collection(name)
        server_items = self._fetch(endpoint or ENDPOINTS[name])
        if server_items is None:
            return ReadResult(data=cached, offline=True)

        items = _merge_pending(server_items, cached)
        self._cache.set_collection(name, items)
        logger.debug("Refreshed %s: %d items", name, len(items))
        return ReadResult(data=items)

    def refresh_user_transactions(self, user_id: str) -> ReadResult:
        """Refresh one user's ledger, leaving other users' cached entries alone."""
        cached = self._cache.get_collection("transactions")
        mine = [item for item in cached if str(item.get("user_id")) == str(user_id)]
        others = [item for item in cached if str(item.get("user_id")) != str(user_id)]

        server_items = self._fetch(f"/api/users/{user_id}/transactions")
        if server_items is None:
            return ReadResult(data=mine, offline=True)

        items = _merge_pending(server_items, mine)
        self._cache.set_collection("transactions", others + items)
        return ReadResult(data=items)

    def refresh_event_participants(self, event_id: str) -> ReadResult:
        """Refresh one event's participants, leaving other events' cached entries alone."""
        cached = self._cache.get_collection("participants")
        mine = [item for item in cached if str(item.get("event_id")) == str(event_id)]
        others = [item for item in cached if str(item.get("event_id")) != str(event_id)]

        server_items = self._fetch(f"/api/events/{event_id}/participants")
        if server_items is None:
            return ReadResult(data=mine, offline=True)

        items = _merge_pending(server_items, mine)
        self._cache.set_collection("participants", others + items)
        return ReadResult(data=items)

    def refresh_all(self, user_id: str | None = None) -> bool:
        """Refresh every collection. Returns False if any read fell back to cache.

        Participants are fetched per event, for events the server already knows.
        """
        results = [self.refresh(name) for name in ENDPOINTS]
        for event in self._cache.get_collection("events"):
            if event.get("sync_state", SyncState.CONFIRMED) == SyncState.CONFIRMED:
                results.append(self.refresh_event_participants(str(event.get("id"))))
        if user_id is not None:
            results.append(self.refresh_user_transactions(user_id))
        return not any(result.offline for result in results)

    def _fetch(self, path: str) -> list[dict[str, Any]] | None:
        """Fresh server items, or None when only cached data is available."""
        try:
            response = self._client.get(path)
        except httpx.HTTPError:
            logger.debug("Failed to fetch %s, using cached data", path)
            return None

        if not response.is_success or response.headers.get(CACHE_HEADER):
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning("Invalid JSON from %s, using cached data", path)
            return None
        if not isinstance(body, list):
            logger.warning("Expected a list from %s, got %s", path, type(body).__name__)
            return None
        return [wire_to_dict(item) for item in body if isinstance(item, dict)]


def _merge_pending(
    server_items: list[dict[str, Any]], cached_items: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    local = {
        str(item.get("id")): item
        for item in cached_items
        if item.get("sync_state", SyncState.CONFIRMED) != SyncState.CONFIRMED
    }
    merged: list[dict[str, Any]] = []
    for item in server_items:
        merged.append(local.pop(str(item.get("id")), item))
    merged.extend(local.values())
    return merged
