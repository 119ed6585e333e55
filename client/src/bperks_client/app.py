"""Builds and wires the client's services."""

import logging
from dataclasses import dataclass
from datetime import timedelta

import httpx

from .cache import LocalCache
from .config import Config
from .gateway import ConnectivityGateway, ImmediateExecutor, QueueingExecutor
from .network import ConnectivityMonitor, ConnectivityProbe
from .queue import ActionQueue
from .reads import CollectionReader
from .reconciler import Reconciler, SyncResult
from .service import PerksService
from .store import LocalStore
from .tiles import TileCacheManager
from .transport import OfflineFallbackTransport

logger = logging.getLogger(__name__)


@dataclass
class OfflineApp:
    """Everything the sync loop, the CLI and the UI layer need."""

    config: Config
    store: LocalStore
    cache: LocalCache
    queue: ActionQueue
    monitor: ConnectivityMonitor
    probe: ConnectivityProbe
    reconciler: Reconciler
    gateway: ConnectivityGateway
    service: PerksService
    reader: CollectionReader
    tiles: TileCacheManager
    http: httpx.Client
    read_http: httpx.Client
    tile_http: httpx.Client

    def sync(self) -> SyncResult:
        return self.reconciler.drain()

    def close(self) -> None:
        for client in (self.http, self.read_http, self.tile_http):
            client.close()


def build_app(
    config: Config,
    transport: httpx.BaseTransport | None = None,
    initially_online: bool = True,
) -> OfflineApp:
    """Compose the client from its configuration.

    ``transport`` replaces the network for every HTTP client (used in tests).
    """
    store = LocalStore(config.cache_dir)
    cache = LocalCache(store)
    queue = ActionQueue(store.namespace("sync_queue"))
    monitor = ConnectivityMonitor(initially_online=initially_online)
    timeout = httpx.Timeout(config.request_timeout_seconds)

    http = httpx.Client(base_url=config.api_base_url, timeout=timeout, transport=transport)
    read_http = httpx.Client(
        base_url=config.api_base_url,
        timeout=timeout,
        transport=OfflineFallbackTransport(store.namespace("responses"), transport),
    )
    tile_http = httpx.Client(
        timeout=timeout,
        transport=transport,
        headers={"User-Agent": "bperks-offline/0.1"},
        follow_redirects=True,
    )

    queueing = QueueingExecutor(queue)
    gateway = ConnectivityGateway(
        monitor=monitor,
        immediate=ImmediateExecutor(http, fallback=queueing, monitor=monitor),
        queueing=queueing,
        always_queue=config.always_queue,
    )
    service = PerksService(cache, gateway, queue=queue, client=http)
    reconciler = Reconciler(
        queue,
        http,
        monitor,
        on_sync_state=service.mark_sync_state,
        on_created=service.adopt_created,
    )
    monitor.on_reconnect(reconciler.drain)

    tiles = TileCacheManager(
        store.namespace("tiles"),
        tile_http,
        ttl=timedelta(days=config.tile_ttl_days),
    )

    logger.debug("Client built for %s (cache: %s)", config.api_base_url, config.cache_dir)
    return OfflineApp(
        config=config,
        store=store,
        cache=cache,
        queue=queue,
        monitor=monitor,
        probe=ConnectivityProbe(http, config.health_path),
        reconciler=reconciler,
        gateway=gateway,
        service=service,
        reader=CollectionReader(read_http, cache),
        tiles=tiles,
        http=http,
        read_http=read_http,
        tile_http=tile_http,
    )
