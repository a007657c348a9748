from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Optional, Tuple

import numpy as np
import requests
from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError

from radarloop.geo import (
    TILE_SIZE,
    BoundingBox,
    lat_to_pixel_y,
    lon_to_pixel_x,
    pixel_x_to_lon,
    pixel_y_to_lat,
)

log = logging.getLogger(__name__)

_GRID_SPACING = 50
_MAJOR_EVERY = 5
_ATTRIBUTION = "Radar data: Environment and Climate Change Canada"


@dataclass
class MapComposition:
    image: Image.Image
    zoom: int
    bounds: BoundingBox
    tiles_loaded: int

    @property
    def is_fallback(self) -> bool:
        return self.tiles_loaded == 0


class TileCache:
    """In-memory decoded tile cache with a TTL."""

    def __init__(self, ttl: int = 900):
        self.ttl = int(ttl)
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Image.Image]] = {}

    def get(self, key: str) -> Optional[Image.Image]:
        with self._lock:
            entry = self._entries.get(key)
        if not entry:
            return None
        ts, img = entry
        if time.time() - ts > self.ttl:
            return None
        return img.copy()

    def put(self, key: str, img: Image.Image) -> None:
        with self._lock:
            self._entries[key] = (time.time(), img)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _fetch_tile(
    session: requests.Session,
    url: str,
    cache: Optional[TileCache],
    timeout: float = 15.0,
) -> Optional[Image.Image]:
    if cache is not None:
        cached = cache.get(url)
        if cached is not None:
            return cached
    try:
        resp = session.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        log.debug("Tile %s failed: %s", url, exc)
        return None
    try:
        img = Image.open(BytesIO(resp.content)).convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        log.debug("Tile %s undecodable: %s", url, exc)
        return None
    if cache is not None:
        cache.put(url, img)
    return img.copy()


def _viewport_bounds(px_min: float, py_min: float, px_max: float, py_max: float, zoom: int) -> BoundingBox:
    return BoundingBox(
        pixel_y_to_lat(py_max, zoom),
        pixel_x_to_lon(px_min, zoom),
        pixel_y_to_lat(py_min, zoom),
        pixel_x_to_lon(px_max, zoom),
    )


def compose_base_map(
    center_lat: float,
    center_lon: float,
    zoom: int,
    width: int,
    height: int,
    session: requests.Session,
    *,
    tile_url: str = "https://tile.openstreetmap.org/{z}/{x}/{y}.png",
    cache: Optional[TileCache] = None,
    background: str = "#D3D3D3",
    timeout: float = 15.0,
) -> MapComposition:
    """Slippy-map mosaic of width x height pixels centred on (lat, lon).

    Falls back to a drawn coordinate grid when no tile could be loaded.
    """
    cx = lon_to_pixel_x(center_lon, zoom)
    cy = lat_to_pixel_y(center_lat, zoom)
    px_min = cx - width / 2.0
    py_min = cy - height / 2.0
    px_max = cx + width / 2.0
    py_max = cy + height / 2.0
    bounds = _viewport_bounds(px_min, py_min, px_max, py_max, zoom)

    try:
        bg = ImageColor.getrgb(background)
    except ValueError:
        bg = (211, 211, 211)
    canvas = Image.new("RGBA", (width, height), (*bg[:3], 255))

    max_tile = 2 ** zoom
    loaded = 0
    for tx in range(math.floor(px_min / TILE_SIZE), math.floor(px_max / TILE_SIZE) + 1):
        for ty in range(math.floor(py_min / TILE_SIZE), math.floor(py_max / TILE_SIZE) + 1):
            if tx < 0 or ty < 0 or tx >= max_tile or ty >= max_tile:
                continue
            tile = _fetch_tile(session, tile_url.format(z=zoom, x=tx, y=ty), cache, timeout)
            if tile is None:
                continue
            if tile.size != (TILE_SIZE, TILE_SIZE):
                tile = tile.resize((TILE_SIZE, TILE_SIZE), Image.LANCZOS)
            canvas.paste(tile, (int(tx * TILE_SIZE - px_min), int(ty * TILE_SIZE - py_min)))
            loaded += 1

    if loaded == 0:
        log.warning("No map tiles available; using coordinate grid background")
        return MapComposition(draw_grid_background(width, height, bounds), zoom, bounds, 0)

    log.info("Base map composed from %d tiles at zoom %d", loaded, zoom)
    return MapComposition(canvas, zoom, bounds, loaded)


def draw_grid_background(width: int, height: int, bounds: BoundingBox) -> Image.Image:
    """Offline stand-in for a base map: gradient, labelled lat/lon grid, centre crosshair."""
    # 45 degree blend from light green to light tan
    yy, xx = np.mgrid[0:height, 0:width].astype(np.float32)
    t = (xx + yy) / max(1.0, float(width + height - 2))
    start = np.array([220, 235, 220], dtype=np.float32)
    end = np.array([245, 245, 220], dtype=np.float32)
    rgb = start + (end - start) * t[..., None]
    alpha = np.full((height, width, 1), 255, dtype=np.float32)
    img = Image.fromarray(np.concatenate([rgb, alpha], axis=2).astype(np.uint8), "RGBA")

    draw = ImageDraw.Draw(img, "RGBA")
    font = ImageFont.load_default()
    minor = (100, 100, 100, 80)
    major = (80, 80, 80, 120)
    text_fill = (60, 60, 60, 200)

    columns = width / float(_GRID_SPACING)
    for i in range(int(width // _GRID_SPACING) + 1):
        x = i * _GRID_SPACING
        is_major = i % _MAJOR_EVERY == 0
        draw.line([(x, 0), (x, height)], fill=major if is_major else minor, width=2 if is_major else 1)
        if is_major and 10 < x < width - 10:
            lon = bounds.min_lon + bounds.lon_span * i / columns
            draw.text((x + 2, 5), f"{lon:.2f}°", font=font, fill=text_fill)

    rows = height / float(_GRID_SPACING)
    for i in range(int(height // _GRID_SPACING) + 1):
        y = i * _GRID_SPACING
        is_major = i % _MAJOR_EVERY == 0
        draw.line([(0, y), (width, y)], fill=major if is_major else minor, width=2 if is_major else 1)
        if is_major and 10 < y < height - 20:
            lat = bounds.max_lat - bounds.lat_span * i / rows
            draw.text((5, y + 2), f"{lat:.2f}°", font=font, fill=text_fill)

    cx, cy, size = width // 2, height // 2, 20
    draw.line([(cx - size, cy), (cx + size, cy)], fill=(255, 0, 0, 150), width=2)
    draw.line([(cx, cy - size), (cx, cy + size)], fill=(255, 0, 0, 150), width=2)

    draw.text((10, height - 25), _ATTRIBUTION, font=font, fill=(80, 80, 80, 200))
    return img
