"""Main loop for the offline client."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from bperks_shared import NewsAlert

from .app import OfflineApp
from .notify import NotificationState, notification_message, notification_title, unseen_alerts
from .tray import TrayManager

logger = logging.getLogger(__name__)


@dataclass
class LoopState:
    """Mutable state for the sync loop."""

    notifications: NotificationState = field(default_factory=NotificationState)
    unread_ids: set[str] = field(default_factory=set)
    sync_requested: bool = False
    mark_read_requested: bool = False
    stop_requested: bool = False

    @property
    def unread_alerts(self) -> int:
        return len(self.unread_ids)


def run_sync_loop(
    app: OfflineApp,
    poll_interval_seconds: int = 10,
    enable_tray: bool = True,
) -> None:
    """Run the sync loop. Does not return unless interrupted."""
    notification_store = app.store.namespace("notifications")
    state = LoopState(notifications=NotificationState.load(notification_store))

    def request_sync() -> None:
        """Callback for "Sync now" from the tray. Picked up on the next tick."""
        state.sync_requested = True

    def request_mark_read() -> None:
        state.mark_read_requested = True

    def request_quit() -> None:
        """Callback for quit from tray."""
        state.stop_requested = True

    tray: TrayManager | None = None
    unwatch: Callable[[], None] | None = None
    if enable_tray:
        tray = TrayManager(on_sync_now=request_sync, on_mark_read=request_mark_read, on_quit=request_quit)
        tray.start()
        unwatch = watch_sync(app, state, tray)

    _initial_sync(app, state, tray)
    state.notifications.save(notification_store)

    logger.info(
        "Starting sync loop (poll=%ds, online=%s, pending=%d)",
        poll_interval_seconds,
        app.monitor.is_online(),
        app.queue.pending_count(),
    )

    try:
        while not state.stop_requested:
            try:
                tick(app, state, tray)
                state.notifications.save(notification_store)
            except KeyboardInterrupt:
                logger.info("Sync loop interrupted")
                break
            except Exception:
                logger.exception("Error in sync loop tick")

            time.sleep(poll_interval_seconds)
    finally:
        if unwatch:
            unwatch()
        if tray:
            tray.stop()


def watch_sync(app: OfflineApp, state: LoopState, tray: TrayManager) -> Callable[[], None]:
    """Show replay passes on the tray while they run. Returns an unsubscribe function."""

    def on_progress(syncing: bool) -> None:
        _update_tray(app, state, tray, is_syncing=syncing)

    return app.reconciler.subscribe(on_progress)


def _initial_sync(app: OfflineApp, state: LoopState, tray: TrayManager | None) -> None:
    """Probe the API, replay anything left from a previous session, and refresh."""
    online = app.probe.check()
    app.monitor.set_online(online)
    if not online:
        logger.warning("API unreachable, using cached data (%d pending)", app.queue.pending_count())
        return

    app.sync()
    _refresh(app, state, tray)
    if tray:
        _update_tray(app, state, tray)


def tick(app: OfflineApp, state: LoopState, tray: TrayManager | None) -> None:
    """Single iteration of the sync loop."""
    # Going offline->online drains the queue through the monitor's reconnect hook
    app.monitor.set_online(app.probe.check())

    if state.sync_requested:
        state.sync_requested = False
        app.sync()

    if state.mark_read_requested:
        state.mark_read_requested = False
        state.unread_ids.clear()

    if app.monitor.is_online():
        _refresh(app, state, tray)

    if tray:
        _update_tray(app, state, tray)


def _update_tray(app: OfflineApp, state: LoopState, tray: TrayManager, is_syncing: bool = False) -> None:
    tray.update(
        is_online=app.monitor.is_online(),
        pending_count=app.queue.pending_count(),
        is_syncing=is_syncing,
        unread_alerts=state.unread_alerts,
    )


def _refresh(app: OfflineApp, state: LoopState, tray: TrayManager | None) -> None:
    """Pull fresh collections and announce news the resident hasn't seen."""
    if not app.reader.refresh_all(app.config.user_id):
        logger.debug("Some collections were served from cache")

    news = app.cache.load_models("news", NewsAlert)
    fresh = unseen_alerts(news, state.notifications)
    if not fresh:
        return

    # Items stay unseen until a notification is shown, but count as unread once
    new_ids = {item.id for item in fresh} - state.unread_ids
    if new_ids:
        state.unread_ids.update(new_ids)
        logger.info("%d new news item(s)", len(new_ids))
    if tray is None or tray.notify(notification_title(fresh[0]), notification_message(fresh)):
        state.notifications.mark_seen(fresh)
