from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Tuple

log = logging.getLogger(__name__)

TILE_SIZE = 256
MAX_MERCATOR_LAT = 85.05112878


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def __post_init__(self):
        if not (self.min_lat < self.max_lat and self.min_lon < self.max_lon):
            raise ValueError(
                f"Degenerate bounding box [{self.min_lat},{self.min_lon}] to [{self.max_lat},{self.max_lon}]"
            )

    @classmethod
    def from_tuple(cls, values: Sequence[float]) -> "BoundingBox":
        min_lat, min_lon, max_lat, max_lon = (float(v) for v in values)
        return cls(min_lat, min_lon, max_lat, max_lon)

    @classmethod
    def around_points(cls, points: Iterable[Tuple[float, float]], padding: float) -> Optional["BoundingBox"]:
        pts = list(points)
        if not pts:
            return None
        lats = [lat for lat, _ in pts]
        lons = [lon for _, lon in pts]
        return cls(
            min(lats) - padding,
            min(lons) - padding,
            max(lats) + padding,
            max(lons) + padding,
        )

    def expand(self, padding: float) -> "BoundingBox":
        return BoundingBox(
            self.min_lat - padding,
            self.min_lon - padding,
            self.max_lat + padding,
            self.max_lon + padding,
        )

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            min(self.min_lat, other.min_lat),
            min(self.min_lon, other.min_lon),
            max(self.max_lat, other.max_lat),
            max(self.max_lon, other.max_lon),
        )

    @property
    def center(self) -> Tuple[float, float]:
        return (self.min_lat + self.max_lat) / 2.0, (self.min_lon + self.max_lon) / 2.0

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lon_span(self) -> float:
        return self.max_lon - self.min_lon

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return self.min_lat, self.min_lon, self.max_lat, self.max_lon

    def wms_param(self) -> str:
        return f"{self.min_lat},{self.min_lon},{self.max_lat},{self.max_lon}"

    def __str__(self) -> str:
        return f"[{self.min_lat:.2f},{self.min_lon:.2f}] to [{self.max_lat:.2f},{self.max_lon:.2f}]"


# Web-Mercator pixel helpers (256px tiles)

def lon_to_pixel_x(lon: float, zoom: int) -> float:
    return (lon + 180.0) / 360.0 * TILE_SIZE * (2 ** zoom)


def lat_to_pixel_y(lat: float, zoom: int) -> float:
    lat = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    lat_rad = math.radians(lat)
    return (1.0 - math.log(math.tan(lat_rad) + (1 / math.cos(lat_rad))) / math.pi) / 2.0 * TILE_SIZE * (2 ** zoom)


def pixel_x_to_lon(x: float, zoom: int) -> float:
    return x / (TILE_SIZE * (2 ** zoom)) * 360.0 - 180.0


def pixel_y_to_lat(y: float, zoom: int) -> float:
    n = math.pi - 2.0 * math.pi * y / (TILE_SIZE * (2 ** zoom))
    return math.degrees(math.atan(math.sinh(n)))


def degrees_per_pixel(zoom: int) -> float:
    return 360.0 / (TILE_SIZE * (2 ** zoom))


def center_zoom_bbox(center_lat: float, center_lon: float, zoom: int, width: int, height: int) -> BoundingBox:
    """Box whose degree span matches a width x height canvas at `zoom`.

    Uses the equatorial degrees-per-pixel for both axes, so the vertical span
    is not corrected for Mercator stretch at higher latitudes.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid canvas {width}x{height}")
    dpp = degrees_per_pixel(zoom)
    lat_extent = height / 2.0 * dpp
    lon_extent = width / 2.0 * dpp
    return BoundingBox(
        center_lat - lat_extent,
        center_lon - lon_extent,
        center_lat + lat_extent,
        center_lon + lon_extent,
    )


class BoundingBoxResolver:
    """Resolves the geographic rectangle used for WMS requests."""

    def __init__(
        self,
        default_bbox: BoundingBox,
        lookup: Callable[[str], Optional[Tuple[float, float]]],
        padding_degrees: float = 0.5,
    ):
        if padding_degrees <= 0:
            raise ValueError("padding_degrees must be positive")
        self.default_bbox = default_bbox
        self.lookup = lookup
        self.padding = float(padding_degrees)

    def static_region(self, ensure_cities: Iterable[str] = ()) -> BoundingBox:
        points: list[Tuple[float, float]] = []
        for name in ensure_cities or ():
            coord = self.lookup(name)
            if coord is None:
                log.warning("Unknown city requested for must-include list: %s", name)
                continue
            points.append(coord)

        cities_box = BoundingBox.around_points(points, self.padding)
        if cities_box is None:
            return self.default_bbox
        bbox = self.default_bbox.union(cities_box)
        log.info("Region expanded to include %d cities: %s", len(points), bbox)
        return bbox

    def center_zoom(self, center_lat: float, center_lon: float, zoom: int, width: int, height: int) -> BoundingBox:
        return center_zoom_bbox(center_lat, center_lon, zoom, width, height)
