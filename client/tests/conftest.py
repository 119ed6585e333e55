"""Shared fixtures for client tests."""

import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from bperks_shared import Event, Reward, User
from bperks_client.cache import LocalCache
from bperks_client.queue import ActionQueue
from bperks_client.store import LocalStore

# Headless test runs have no system tray
os.environ.setdefault("PYSTRAY_BACKEND", "dummy")

NOW = datetime(2025, 1, 15, 10, 0, tzinfo=UTC)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "store")


@pytest.fixture
def cache(store: LocalStore) -> LocalCache:
    return LocalCache(store)


@pytest.fixture
def queue(store: LocalStore) -> ActionQueue:
    return ActionQueue(store.namespace("sync_queue"))


def make_client(handler: Handler) -> httpx.Client:
    return httpx.Client(base_url="http://bperks.test", transport=httpx.MockTransport(handler))


def ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True})


def offline_handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Network unreachable", request=request)


def make_user(user_id: str, points: int = 0, is_admin: bool = False, username: str | None = None) -> User:
    return User(
        id=user_id,
        username=username or f"user{user_id}",
        name=f"Resident {user_id}",
        age=30,
        phone_number="09171234567",
        points=points,
        is_admin=is_admin,
        created_at=NOW - timedelta(days=30),
    )


def make_reward(reward_id: str, points_cost: int = 50, available: int = 5) -> Reward:
    return Reward(
        id=reward_id,
        title="Rice (5kg)",
        description="A sack of rice from the barangay hall",
        points_cost=points_cost,
        category="food",
        total_quantity=max(available, 1),
        available_quantity=available,
        is_available=available > 0,
        created_at=NOW - timedelta(days=10),
    )


def make_event(event_id: str, points_reward: int = 20, max_participants: int | None = None) -> Event:
    return Event(
        id=event_id,
        title="Coastal cleanup",
        description="Clean the riverbank",
        location="Purok 3",
        points_reward=points_reward,
        start_date=NOW + timedelta(days=2),
        end_date=NOW + timedelta(days=2, hours=4),
        max_participants=max_participants,
        created_at=NOW - timedelta(days=1),
    )
