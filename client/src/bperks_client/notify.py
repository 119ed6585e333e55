"""Announcing news and alerts the resident hasn't seen yet."""

import logging
from dataclasses import dataclass, field

from bperks_shared import NewsAlert, NewsType

from .store import LocalStore

logger = logging.getLogger(__name__)

_SEEN_KEY = "seen_news"


@dataclass
class NotificationState:
    """Tracks which news items have already been announced."""

    seen_ids: set[str] = field(default_factory=set)

    @classmethod
    def load(cls, store: LocalStore) -> "NotificationState":
        seen = store.get(_SEEN_KEY)
        if not isinstance(seen, list):
            return cls()
        return cls(seen_ids={str(item) for item in seen})

    def save(self, store: LocalStore) -> None:
        store.set(_SEEN_KEY, sorted(self.seen_ids))

    def mark_seen(self, items: list[NewsAlert]) -> None:
        self.seen_ids.update(item.id for item in items)

    def clear(self) -> None:
        self.seen_ids.clear()


def unseen_alerts(news: list[NewsAlert], state: NotificationState) -> list[NewsAlert]:
    """News items not yet announced, newest first."""
    fresh = [item for item in news if item.id not in state.seen_ids]
    return sorted(fresh, key=lambda item: item.published_at, reverse=True)


def notification_title(item: NewsAlert) -> str:
    if item.type == NewsType.ALERT:
        return f"⚠️ Alert: {item.title}"
    elif item.type == NewsType.ANNOUNCEMENT:
        return f"📢 {item.title}"
    else:
        return item.title


def notification_message(items: list[NewsAlert]) -> str:
    if len(items) == 1:
        content = items[0].content
        return content if len(content) <= 120 else content[:117] + "..."
    return f"{len(items)} new updates from the barangay"
