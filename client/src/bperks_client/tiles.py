"""Map tile cache for offline map rendering."""

import base64
import io
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx
from PIL import Image, ImageDraw, ImageFont
from pydantic import BaseModel, field_serializer, field_validator

from .store import LocalStore

logger = logging.getLogger(__name__)

DEFAULT_TILE_TTL = timedelta(days=7)
OSM_TILE_TEMPLATE = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
SUBDOMAINS = ("a", "b", "c")
TILE_SIZE = 256


class Bounds(BaseModel):
    """Lat/lng bounding box."""

    north: float
    south: float
    east: float
    west: float


# Barangay San Vicente service area
BARANGAY_BOUNDS = Bounds(north=16.4050, south=16.4000, east=120.5980, west=120.5940)


@dataclass(frozen=True)
class TileCoord:
    x: int
    y: int
    z: int


@dataclass
class TileCacheProgress:
    total: int = 0
    cached: int = 0
    failed: int = 0


@dataclass
class TileCacheStats:
    tile_count: int = 0
    size_bytes: int = 0


class TileCacheEntry(BaseModel):
    """Downloaded tile image with timestamp."""

    tile_url: str
    image: bytes
    stored_at_ms: int

    @field_serializer("image")
    def _encode_image(self, image: bytes) -> str:
        return base64.b64encode(image).decode("ascii")

    @field_validator("image", mode="before")
    @classmethod
    def _decode_image(cls, value: Any) -> Any:
        if isinstance(value, str):
            return base64.b64decode(value)
        return value


def lat_lng_to_tile(lat: float, lng: float, zoom: int) -> tuple[int, int]:
    """Web Mercator slippy-map tile containing a point."""
    n = 2**zoom
    lat_rad = math.radians(lat)
    x = math.floor((lng + 180) / 360 * n)
    y = math.floor((1 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2 * n)
    return x, y


def tiles_for_area(bounds: Bounds, min_zoom: int, max_zoom: int) -> list[TileCoord]:
    """Every tile covering ``bounds`` at each zoom level from min to max inclusive."""
    tiles: list[TileCoord] = []
    for z in range(min_zoom, max_zoom + 1):
        west_x, north_y = lat_lng_to_tile(bounds.north, bounds.west, z)
        east_x, south_y = lat_lng_to_tile(bounds.south, bounds.east, z)
        for x in range(west_x, east_x + 1):
            for y in range(north_y, south_y + 1):
                tiles.append(TileCoord(x=x, y=y, z=z))
    return tiles


def build_tile_url(template: str, z: int, x: int, y: int) -> str:
    subdomain = SUBDOMAINS[abs(x + y) % len(SUBDOMAINS)]
    return (
        template.replace("{s}", subdomain)
        .replace("{z}", str(z))
        .replace("{x}", str(x))
        .replace("{y}", str(y))
    )


def create_placeholder_tile(size: int = TILE_SIZE) -> bytes:
    """PNG shown in place of a tile that isn't cached."""
    img = Image.new("RGB", (size, size), (229, 231, 235))
    draw = ImageDraw.Draw(img)

    # Grid so the map still reads as a map
    step = size // 4
    for offset in range(0, size + 1, step):
        draw.line([(offset, 0), (offset, size)], fill=(209, 213, 219), width=1)
        draw.line([(0, offset), (size, offset)], fill=(209, 213, 219), width=1)

    text = "Offline"
    try:
        font = ImageFont.truetype("arial.ttf", size // 10)
    except OSError:
        font = ImageFont.load_default()
    bbox = draw.textbbox((0, 0), text, font=font)
    x = (size - (bbox[2] - bbox[0])) // 2
    y = (size - (bbox[3] - bbox[1])) // 2 - bbox[1]
    draw.text((x, y), text, fill=(107, 114, 128), font=font)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


class TileCacheManager:
    """Downloads map tiles and serves them back while offline.

    Entries expire lazily: an expired tile is dropped when it is read, never
    by a background sweep.
    """

    def __init__(
        self,
        store: LocalStore,
        client: httpx.Client,
        ttl: timedelta = DEFAULT_TILE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._client = client
        self._ttl_ms = int(ttl.total_seconds() * 1000)
        self._clock = clock
        self._placeholder: bytes | None = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def cache_tiles_for_area(
        self,
        bounds: Bounds,
        min_zoom: int = 10,
        max_zoom: int = 18,
        tile_url_template: str = OSM_TILE_TEMPLATE,
    ) -> TileCacheProgress:
        tiles = tiles_for_area(bounds, min_zoom, max_zoom)
        progress = TileCacheProgress(total=len(tiles))
        logger.info("Starting to cache %d tiles", progress.total)

        for tile in tiles:
            url = build_tile_url(tile_url_template, tile.z, tile.x, tile.y)
            try:
                response = self._client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                progress.failed += 1
                logger.warning("Failed to cache tile %d/%d/%d: %s", tile.z, tile.x, tile.y, e)
                continue

            self.store_tile(url, response.content)
            progress.cached += 1
            if progress.cached % 10 == 0:
                logger.info("Cached %d/%d tiles", progress.cached, progress.total)

        logger.info("Finished caching %d/%d tiles", progress.cached, progress.total)
        return progress

    def store_tile(self, url: str, image: bytes) -> None:
        entry = TileCacheEntry(tile_url=url, image=image, stored_at_ms=self._now_ms())
        self._store.set(url, entry.model_dump(mode="json"))

    def get_tile(self, url: str) -> bytes | None:
        """Cached tile image, or None if missing or expired."""
        entry = self._load_entry(url)
        if entry is None:
            return None
        if self._now_ms() - entry.stored_at_ms > self._ttl_ms:
            logger.debug("Tile expired: %s", url)
            self._store.remove(url)
            return None
        return entry.image

    def get_tile_or_placeholder(self, url: str) -> bytes:
        tile = self.get_tile(url)
        if tile is not None:
            return tile
        if self._placeholder is None:
            self._placeholder = create_placeholder_tile()
        return self._placeholder

    def get_cache_stats(self) -> TileCacheStats:
        stats = TileCacheStats()
        for key in self._store.keys():
            entry = self._load_entry(key)
            if entry is None:
                continue
            stats.tile_count += 1
            stats.size_bytes += len(entry.image)
        return stats

    def clear_cache(self) -> None:
        self._store.clear()
        logger.info("Map cache cleared")

    def _load_entry(self, url: str) -> TileCacheEntry | None:
        raw = self._store.get(url)
        if raw is None:
            return None
        try:
            return TileCacheEntry.model_validate(raw)
        except ValueError:
            logger.exception("Discarding malformed tile entry %s", url)
            return None
