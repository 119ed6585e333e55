"""Replays queued mutations once the API is reachable again."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from bperks_shared import SyncState

from .network import ConnectivityMonitor
from .queue import ActionKind, ActionQueue, QueuedAction, RecordRef

logger = logging.getLogger(__name__)

SyncStateCallback = Callable[[RecordRef, SyncState], None]
CreatedCallback = Callable[[QueuedAction, Any], None]
ProgressListener = Callable[[bool], None]


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass."""

    sent: int = 0
    failed: int = 0
    pending: int = 0
    skipped: bool = False


class Reconciler:
    """Drains the action queue against the API.

    Best effort: a failing action stays queued in its original position and
    the pass moves on to the next one. There is no retry cap or backoff;
    failures are retried on every later pass.

    When a replayed create succeeds, ``on_created`` gets the server's answer
    and may rewrite later queue entries (to use the server's id). The rest
    of the pass then works from the rewritten entries.
    """

    def __init__(
        self,
        queue: ActionQueue,
        client: httpx.Client,
        monitor: ConnectivityMonitor,
        on_sync_state: SyncStateCallback | None = None,
        on_created: CreatedCallback | None = None,
    ):
        self._queue = queue
        self._client = client
        self._monitor = monitor
        self._on_sync_state = on_sync_state
        self._on_created = on_created
        self._listeners: list[ProgressListener] = []
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Get told when a pass starts (True) and ends (False). Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def drain(self) -> SyncResult:
        if self._monitor.is_offline():
            logger.debug("Offline, skipping sync")
            return SyncResult(pending=self._queue.pending_count(), skipped=True)

        actions = self._queue.peek_all()
        if not actions:
            return SyncResult()

        logger.info("Syncing %d queued actions", len(actions))
        self._set_in_progress(True)
        result = SyncResult()
        succeeded: set[str] = set()
        try:
            index = 0
            while index < len(actions):
                action = actions[index]
                index += 1
                body, error = self._replay(action)
                if error is not None:
                    logger.warning(
                        "Failed to sync %s %s (%s): %s",
                        action.method,
                        action.endpoint,
                        action.id,
                        error,
                    )
                    result.failed += 1
                    self._report(action, SyncState.FAILED)
                    continue

                succeeded.add(action.id)
                result.sent += 1
                self._report(action, SyncState.CONFIRMED)
                if action.kind == ActionKind.CREATE and self._created(action, body):
                    later = {a.id for a in actions[index:]}
                    actions = actions[:index] + [a for a in self._queue.peek_all() if a.id in later]
        finally:
            self._queue.remove_many(succeeded)
            self._set_in_progress(False)

        result.pending = self._queue.pending_count()
        logger.info(
            "Sync finished: %d sent, %d failed, %d pending",
            result.sent,
            result.failed,
            result.pending,
        )
        return result

    def _replay(self, action: QueuedAction) -> tuple[Any, str | None]:
        """Send one action. Returns the response body and an error description (None on success)."""
        try:
            response = self._client.request(
                action.method.value,
                action.endpoint,
                json=action.payload,
                headers=action.headers,
            )
        except httpx.HTTPError as e:
            return None, f"{type(e).__name__}: {e}"
        if not response.is_success:
            return None, f"HTTP {response.status_code}"
        try:
            return (response.json() if response.content else None), None
        except ValueError:
            return None, None

    def _created(self, action: QueuedAction, body: Any) -> bool:
        if self._on_created is None:
            return False
        try:
            self._on_created(action, body)
        except Exception:
            logger.exception("Failed to apply server response for %s", action.id)
        return True

    def _report(self, action: QueuedAction, state: SyncState) -> None:
        if self._on_sync_state is None:
            return
        for ref in action.records:
            try:
                self._on_sync_state(ref, state)
            except Exception:
                logger.exception("Failed to update sync state for %s", ref)

    def _set_in_progress(self, in_progress: bool) -> None:
        self._in_progress = in_progress
        for listener in list(self._listeners):
            try:
                listener(in_progress)
            except Exception:
                logger.exception("Sync progress listener failed")
