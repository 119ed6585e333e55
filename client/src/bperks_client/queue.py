"""Persistent FIFO queue of mutations waiting to reach the server."""

import logging
import random
import string
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ValidationError

from .cache import now_ms
from .store import LocalStore

logger = logging.getLogger(__name__)

_QUEUE_KEY = "actions"
_ID_ALPHABET = string.digits + string.ascii_lowercase


class ActionKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class HttpMethod(StrEnum):
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class RecordRef(BaseModel):
    """Points a queued action at a local record it was applied to."""

    collection: str
    record_id: str


class QueuedAction(BaseModel):
    """Mutation that couldn't be sent, or was deliberately held back."""

    id: str
    kind: ActionKind
    endpoint: str
    method: HttpMethod
    payload: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    enqueued_at_ms: int
    records: list[RecordRef] = []


def _new_action_id(timestamp_ms: int) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"offline_{timestamp_ms}_{suffix}"


class ActionQueue:
    """Ordered list of pending mutations, stored as a single document.

    Every operation reads and rewrites the whole list, so order is exactly
    enqueue order.
    """

    def __init__(self, store: LocalStore):
        self._store = store

    def enqueue(
        self,
        kind: ActionKind,
        endpoint: str,
        method: HttpMethod,
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        records: list[RecordRef] | None = None,
    ) -> QueuedAction:
        """Append an action to the queue and persist it."""
        queue = self._load()
        taken = {action.id for action in queue}
        timestamp = now_ms()
        action_id = _new_action_id(timestamp)
        while action_id in taken:
            action_id = _new_action_id(timestamp)

        action = QueuedAction(
            id=action_id,
            kind=kind,
            endpoint=endpoint,
            method=method,
            payload=payload,
            headers=headers,
            enqueued_at_ms=timestamp,
            records=records or [],
        )
        queue.append(action)
        self._save(queue)
        logger.info("Queued %s %s (%s), %d pending", method, endpoint, kind, len(queue))
        return action

    def peek_all(self) -> list[QueuedAction]:
        """Return every queued action, oldest first."""
        return self._load()

    def pending_count(self) -> int:
        return len(self._load())

    def remove_by_id(self, action_id: str) -> None:
        self.remove_many({action_id})

    def remove_many(self, action_ids: set[str]) -> None:
        """Drop the given actions, keeping everything else in place."""
        if not action_ids:
            return
        queue = self._load()
        remaining = [action for action in queue if action.id not in action_ids]
        self._save(remaining)
        logger.debug("Removed %d actions from queue", len(queue) - len(remaining))

    def replace_record_id(self, old_id: str, new_id: str) -> int:
        """Point queued actions at a record's server id instead of its local one.

        Rewrites record refs, endpoint path segments and payload values equal
        to ``old_id``. Returns the number of actions changed.
        """
        queue = self._load()
        changed = 0
        for action in queue:
            records = [
                ref.model_copy(update={"record_id": new_id}) if ref.record_id == old_id else ref
                for ref in action.records
            ]
            endpoint = "/".join(new_id if part == old_id else part for part in action.endpoint.split("/"))
            payload = _replace_value(action.payload, old_id, new_id)
            if records != action.records or endpoint != action.endpoint or payload != action.payload:
                action.records = records
                action.endpoint = endpoint
                action.payload = payload
                changed += 1
        if changed:
            self._save(queue)
            logger.info("Re-keyed %s to %s in %d queued actions", old_id, new_id, changed)
        return changed

    def clear(self) -> None:
        self._save([])
        logger.info("Cleared sync queue")

    def _load(self) -> list[QueuedAction]:
        data = self._store.get(_QUEUE_KEY)
        if not isinstance(data, list):
            return []
        queue: list[QueuedAction] = []
        for item in data:
            try:
                queue.append(QueuedAction.model_validate(item))
            except ValidationError:
                logger.warning(
                    "Dropping invalid queued action %r",
                    item.get("id") if isinstance(item, dict) else item,
                )
        return queue

    def _save(self, queue: list[QueuedAction]) -> None:
        self._store.set(_QUEUE_KEY, [action.model_dump(mode="json") for action in queue])


def _replace_value(value: Any, old: str, new: str) -> Any:
    if isinstance(value, dict):
        return {key: _replace_value(item, old, new) for key, item in value.items()}
    if isinstance(value, list):
        return [_replace_value(item, old, new) for item in value]
    if value == old:
        return new
    return value
