"""Connectivity tracking."""

import logging
from collections.abc import Callable

import httpx

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Holds the current online flag and notifies listeners of transitions.

    Reconnect callbacks run synchronously inside ``set_online``; anything
    they raise is logged and swallowed so the signal source never sees it.
    """

    def __init__(self, initially_online: bool = True):
        self._online = initially_online
        self._listeners: list[ConnectivityListener] = []
        self._reconnect_callbacks: list[Callable[[], object]] = []

    def is_online(self) -> bool:
        return self._online

    def is_offline(self) -> bool:
        return not self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a transition listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_reconnect(self, callback: Callable[[], object]) -> None:
        self._reconnect_callbacks.append(callback)

    def set_online(self, online: bool) -> None:
        """Feed a platform online/offline signal."""
        if online == self._online:
            return
        self._online = online
        if online:
            logger.info("Connection restored")
        else:
            logger.warning("Lost connection, switching to offline mode")

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener failed")

        if online:
            for callback in list(self._reconnect_callbacks):
                try:
                    callback()
                except Exception:
                    logger.exception("Reconnect handler failed")


class ConnectivityProbe:
    """Checks whether the API is reachable."""

    def __init__(self, client: httpx.Client, health_path: str = "/api/health"):
        self._client = client
        self._health_path = health_path

    def check(self) -> bool:
        try:
            response = self._client.get(self._health_path)
        except httpx.HTTPError:
            logger.debug("Connectivity probe failed", exc_info=True)
            return False
        return response.is_success
