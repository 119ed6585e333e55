"""Tests for refreshing cached collections."""

import httpx

from bperks_client.cache import LocalCache
from bperks_client.reads import CollectionReader, _merge_pending

from conftest import make_client, offline_handler

EVENTS = [
    {"id": 1, "title": "Coastal cleanup", "pointsReward": 20, "isActive": True},
    {"id": 2, "title": "Blood drive", "pointsReward": 50, "isActive": True},
]


def _api(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/events":
        return httpx.Response(200, json=EVENTS)
    if request.url.path == "/api/users/7/transactions":
        return httpx.Response(200, json=[{"id": 10, "userId": 7, "amount": 20}])
    if request.url.path == "/api/events/1/participants":
        return httpx.Response(200, json=[{"id": 30, "eventId": 1, "userId": 8, "status": "registered"}])
    return httpx.Response(200, json=[])


def test_refresh_replaces_cache_with_server_data(cache: LocalCache) -> None:
    cache.set_collection("events", [{"id": "99", "title": "Stale", "sync_state": "confirmed"}])

    result = CollectionReader(make_client(_api), cache).refresh("events")

    assert not result.offline
    assert [item["id"] for item in result.data] == [1, 2]
    assert result.data[0]["points_reward"] == 20
    assert cache.get_collection("events") == result.data


def test_refresh_falls_back_to_cache(cache: LocalCache) -> None:
    cache.set_collection("events", [{"id": "1", "title": "Cached"}])

    result = CollectionReader(make_client(offline_handler), cache).refresh("events")

    assert result.offline
    assert result.data == [{"id": "1", "title": "Cached"}]


def test_server_error_falls_back_to_cache(cache: LocalCache) -> None:
    cache.set_collection("news", [{"id": "1"}])

    result = CollectionReader(make_client(lambda request: httpx.Response(500)), cache).refresh("news")

    assert result.offline
    assert cache.get_collection("news") == [{"id": "1"}]


def test_pending_records_survive_refresh(cache: LocalCache) -> None:
    cache.set_collection(
        "events",
        [
            {"id": "1", "title": "Renamed offline", "sync_state": "pending"},
            {"id": "local", "title": "Created offline", "sync_state": "failed"},
        ],
    )

    result = CollectionReader(make_client(_api), cache).refresh("events")

    assert [item["title"] for item in result.data] == ["Renamed offline", "Blood drive", "Created offline"]


def test_user_transactions_leave_other_users_alone(cache: LocalCache) -> None:
    cache.set_collection(
        "transactions",
        [
            {"id": "a", "user_id": "8", "amount": 5, "sync_state": "pending"},
            {"id": "b", "user_id": "7", "amount": 1, "sync_state": "confirmed"},
        ],
    )

    result = CollectionReader(make_client(_api), cache).refresh_user_transactions("7")

    assert result.data == [{"id": 10, "user_id": 7, "amount": 20}]
    assert cache.get_collection("transactions") == [
        {"id": "a", "user_id": "8", "amount": 5, "sync_state": "pending"},
        {"id": 10, "user_id": 7, "amount": 20},
    ]


def test_refresh_all_reports_offline(cache: LocalCache) -> None:
    assert CollectionReader(make_client(_api), cache).refresh_all(user_id="7")
    assert not CollectionReader(make_client(offline_handler), cache).refresh_all()


def test_merge_pending() -> None:
    server = [{"id": 1, "v": "server"}, {"id": 2, "v": "server"}]
    cached = [
        {"id": "2", "v": "local", "sync_state": "pending"},
        {"id": "1", "v": "old", "sync_state": "confirmed"},
        {"id": "3", "v": "new", "sync_state": "pending"},
    ]

    assert _merge_pending(server, cached) == [
        {"id": 1, "v": "server"},
        {"id": "2", "v": "local", "sync_state": "pending"},
        {"id": "3", "v": "new", "sync_state": "pending"},
    ]


def test_event_participants_leave_other_events_alone(cache: LocalCache) -> None:
    cache.set_collection(
        "participants",
        [
            {"id": "p1", "event_id": "2", "user_id": "7"},
            {"id": "p2", "event_id": "1", "user_id": "7", "sync_state": "pending"},
        ],
    )

    result = CollectionReader(make_client(_api), cache).refresh_event_participants("1")

    assert [item["id"] for item in result.data] == [30, "p2"]
    assert cache.get_collection("participants") == [
        {"id": "p1", "event_id": "2", "user_id": "7"},
        {"id": 30, "event_id": 1, "user_id": 8, "status": "registered"},
        {"id": "p2", "event_id": "1", "user_id": "7", "sync_state": "pending"},
    ]


def test_refresh_all_fetches_participants_for_server_events(cache: LocalCache) -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        return _api(request)

    cache.set_collection("events", [{"id": "local", "title": "Created offline", "sync_state": "pending"}])

    assert CollectionReader(make_client(handler), cache).refresh_all()

    assert "/api/events/1/participants" in requested
    assert "/api/events/2/participants" in requested
    assert "/api/events/local/participants" not in requested
    assert cache.get_by_id("participants", "30")["user_id"] == 8
