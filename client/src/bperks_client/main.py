"""Entry point for the B-Perks offline client."""

import argparse
import logging
import sys
from pathlib import Path

from .app import OfflineApp, build_app
from .config import load_config
from .loop import run_sync_loop
from .notify import NotificationState
from .tiles import BARANGAY_BOUNDS, Bounds

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_app(args: argparse.Namespace) -> OfflineApp:
    setup_logging(args.verbose, args.log_file)

    config_path: Path = args.config
    if not config_path.exists():
        logger.error("Configuration file not found: %s", config_path)
        sys.exit(1)

    config = load_config(config_path)
    logger.info("Loaded configuration for %s", config.api_base_url)
    return build_app(config)


def cmd_run(args: argparse.Namespace) -> None:
    """Run the sync loop interactively."""
    app = _load_app(args)
    try:
        run_sync_loop(
            app,
            poll_interval_seconds=app.config.poll_interval_seconds,
            enable_tray=not args.no_tray,
        )
    finally:
        app.close()


def cmd_sync(args: argparse.Namespace) -> None:
    """Replay queued actions once."""
    app = _load_app(args)
    try:
        app.monitor.set_online(app.probe.check())
        if app.monitor.is_offline():
            logger.error("API unreachable, %d action(s) still queued", app.queue.pending_count())
            sys.exit(2)
        result = app.sync()
        print(f"Sent {result.sent}, failed {result.failed}, pending {result.pending}")
        if result.failed:
            sys.exit(3)
    finally:
        app.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Show queue and cache status."""
    app = _load_app(args)
    try:
        online = app.probe.check()
        actions = app.queue.peek_all()
        stats = app.tiles.get_cache_stats()
        print(f"API:             {'online' if online else 'offline'} ({app.config.api_base_url})")
        print(f"Pending actions: {len(actions)}")
        for action in actions:
            print(f"  {action.id}  {action.method:<6} {action.endpoint}")
        print(f"Cached entries:  {app.cache.cache_size()}")
        print(f"Unsynced records: {len(app.service.pending_records())}")
        print(f"Map tiles:       {stats.tile_count} ({stats.size_bytes / 1024:.1f} KiB)")
        print(f"Disk usage:      {app.store.size_bytes() / 1024:.1f} KiB")
    finally:
        app.close()


def cmd_cache_tiles(args: argparse.Namespace) -> None:
    """Download map tiles for offline use."""
    app = _load_app(args)
    bounds = BARANGAY_BOUNDS
    if args.bounds:
        north, south, east, west = args.bounds
        bounds = Bounds(north=north, south=south, east=east, west=west)
    try:
        progress = app.tiles.cache_tiles_for_area(
            bounds,
            min_zoom=args.min_zoom,
            max_zoom=args.max_zoom,
            tile_url_template=app.config.tile_url_template,
        )
        print(f"Cached {progress.cached}/{progress.total} tiles ({progress.failed} failed)")
    finally:
        app.close()


def cmd_clear_cache(args: argparse.Namespace) -> None:
    """Drop cached data. Queued actions are kept unless --queue is given."""
    app = _load_app(args)
    try:
        app.cache.clear()
        app.tiles.clear_cache()
        app.store.namespace("responses").clear()
        notification_store = app.store.namespace("notifications")
        notifications = NotificationState.load(notification_store)
        notifications.clear()
        notifications.save(notification_store)
        if args.queue:
            app.queue.clear()
        print("Cache cleared")
    finally:
        app.close()


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=Path("config.json"),
        help="Path to configuration file",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="B-Perks offline client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bperks                         Run the sync loop with tray icon
  bperks run --no-tray           Run without tray icon
  bperks sync                    Replay queued actions now
  bperks status                  Show pending actions and cache size
  bperks cache-tiles             Download map tiles for the barangay
  bperks clear-cache --queue     Drop all cached data and queued actions
""",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the sync loop")
    _add_common_args(run_parser)
    run_parser.add_argument(
        "--no-tray",
        action="store_true",
        help="Disable system tray icon",
    )
    run_parser.set_defaults(func=cmd_run)

    sync_parser = subparsers.add_parser("sync", help="Replay queued actions once")
    _add_common_args(sync_parser)
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show queue and cache status")
    _add_common_args(status_parser)
    status_parser.set_defaults(func=cmd_status)

    tiles_parser = subparsers.add_parser("cache-tiles", help="Download map tiles for offline use")
    _add_common_args(tiles_parser)
    tiles_parser.add_argument(
        "--bounds",
        type=float,
        nargs=4,
        metavar=("NORTH", "SOUTH", "EAST", "WEST"),
        help="Area to cache (default: Barangay San Vicente)",
    )
    tiles_parser.add_argument("--min-zoom", type=int, default=10)
    tiles_parser.add_argument("--max-zoom", type=int, default=18)
    tiles_parser.set_defaults(func=cmd_cache_tiles)

    clear_parser = subparsers.add_parser("clear-cache", help="Drop cached data")
    _add_common_args(clear_parser)
    clear_parser.add_argument(
        "--queue",
        action="store_true",
        help="Also drop actions that haven't synced yet",
    )
    clear_parser.set_defaults(func=cmd_clear_cache)

    # Common args on the main parser for the default (run) behavior
    _add_common_args(parser)
    parser.add_argument(
        "--no-tray",
        action="store_true",
        help="Disable system tray icon",
    )

    return parser


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()

    # Default to run if no subcommand
    if args.command is None:
        cmd_run(args)
    else:
        args.func(args)


if __name__ == "__main__":
    main()
