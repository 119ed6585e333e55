"""System tray indicator for connectivity and pending sync."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from PIL import Image, ImageDraw, ImageFont
from pystray import Icon, Menu, MenuItem

logger = logging.getLogger(__name__)


class TrayColor(Enum):
    """Color states for the tray icon."""

    GREEN = (34, 197, 94)    # Online, nothing pending
    AMBER = (245, 158, 11)   # Online, actions waiting to sync
    BLUE = (59, 130, 246)    # Syncing
    RED = (239, 68, 68)      # Offline


def get_tray_color(is_online: bool, pending_count: int, is_syncing: bool) -> TrayColor:
    """Determine tray icon color from connectivity and queue state."""
    if not is_online:
        return TrayColor.RED
    if is_syncing:
        return TrayColor.BLUE
    if pending_count > 0:
        return TrayColor.AMBER
    return TrayColor.GREEN


def create_tray_icon_image(
    pending_count: int,
    color: TrayColor,
    size: int = 64,
) -> Image.Image:
    """Create a tray icon image showing the number of pending actions."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    padding = 2
    draw.ellipse(
        [padding, padding, size - padding, size - padding],
        fill=color.value,
    )

    # Nothing pending: a plain dot reads better than a "0"
    if pending_count <= 0:
        return img

    text = str(pending_count) if pending_count < 100 else "99+"

    font_size = size // 2 if len(text) <= 2 else size // 3
    try:
        font = ImageFont.truetype("arial.ttf", font_size)
    except OSError:
        font = ImageFont.load_default()

    bbox = draw.textbbox((0, 0), text, font=font)
    text_width = bbox[2] - bbox[0]
    text_height = bbox[3] - bbox[1]
    x = (size - text_width) // 2
    y = (size - text_height) // 2 - bbox[1]

    draw.text((x, y), text, fill=(255, 255, 255), font=font)

    return img


@dataclass
class TrayState:
    """State displayed in the tray icon."""

    is_online: bool = True
    pending_count: int = 0
    is_syncing: bool = False
    unread_alerts: int = 0


class TrayManager:
    """Manages the system tray icon."""

    def __init__(
        self,
        on_sync_now: Callable[[], None] | None = None,
        on_quit: Callable[[], None] | None = None,
        on_mark_read: Callable[[], None] | None = None,
    ):
        self._state = TrayState()
        self._icon: Icon | None = None
        self._on_sync_now = on_sync_now
        self._on_mark_read = on_mark_read
        self._on_quit = on_quit
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the tray icon in a background thread."""
        self._icon = Icon(
            name="B-Perks",
            icon=self._create_icon(),
            title=self._get_tooltip(),
            menu=self._create_menu(),
        )
        thread = threading.Thread(target=self._icon.run, daemon=True)
        thread.start()
        logger.info("Tray icon started")

    def stop(self) -> None:
        """Stop the tray icon."""
        if self._icon:
            self._icon.stop()
            self._icon = None
            logger.info("Tray icon stopped")

    def update(
        self,
        is_online: bool,
        pending_count: int,
        is_syncing: bool = False,
        unread_alerts: int = 0,
    ) -> None:
        """Update the tray icon state."""
        with self._lock:
            self._state = TrayState(
                is_online=is_online,
                pending_count=pending_count,
                is_syncing=is_syncing,
                unread_alerts=unread_alerts,
            )

        if self._icon:
            self._icon.icon = self._create_icon()
            self._icon.title = self._get_tooltip()
            self._icon.menu = self._create_menu()

    def notify(self, title: str, message: str) -> bool:
        """Show a desktop notification. Returns True if it was shown."""
        if not self._icon:
            return False
        try:
            self._icon.notify(message, title)
            return True
        except Exception:
            logger.exception("Failed to show notification")
            return False

    def _create_icon(self) -> Image.Image:
        with self._lock:
            color = get_tray_color(
                self._state.is_online,
                self._state.pending_count,
                self._state.is_syncing,
            )
            return create_tray_icon_image(self._state.pending_count, color)

    def _get_tooltip(self) -> str:
        with self._lock:
            return tooltip_text(self._state)

    def _create_menu(self) -> Menu:
        """Create the right-click menu."""
        with self._lock:
            state = self._state

        connection_text = "🟢 Online" if state.is_online else "🔴 Offline"
        pending_text = f"{state.pending_count} action(s) waiting to sync"
        alerts_text = f"{state.unread_alerts} new alert(s)"

        items = [
            MenuItem(connection_text, None, enabled=False),
            MenuItem(pending_text, None, enabled=False),
            MenuItem(alerts_text, None, enabled=False),
            Menu.SEPARATOR,
            MenuItem(
                "Sync now",
                self._on_sync_now_clicked,
                enabled=state.is_online and state.pending_count > 0,
            ),
            MenuItem(
                "Mark alerts read",
                self._on_mark_read_clicked,
                enabled=state.unread_alerts > 0,
            ),
            Menu.SEPARATOR,
            MenuItem("Quit", self._on_quit_clicked),
        ]

        return Menu(*items)

    def _on_sync_now_clicked(self) -> None:
        logger.info("Sync requested from tray")
        if self._on_sync_now:
            self._on_sync_now()

    def _on_mark_read_clicked(self) -> None:
        if self._on_mark_read:
            self._on_mark_read()

    def _on_quit_clicked(self) -> None:
        logger.info("Quit requested from tray")
        if self._on_quit:
            self._on_quit()
        self.stop()


def tooltip_text(state: TrayState) -> str:
    if not state.is_online:
        return f"B-Perks: Offline mode ({state.pending_count} pending)"
    if state.is_syncing:
        return "B-Perks: Syncing..."
    if state.pending_count:
        return f"B-Perks: Online ({state.pending_count} pending)"
    return "B-Perks: Online"
