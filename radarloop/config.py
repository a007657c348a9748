from __future__ import annotations
import argparse
import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

from radarloop.exceptions import ConfigError

log = logging.getLogger(__name__)

DEFAULT_WMS_BASE = "https://geo.weather.gc.ca/geomet"
DEFAULT_LAYER = "RADAR_1KM_RRAI"
DEFAULT_TILE_URL = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"

# Rough Quebec extent, lat/lon order: min_lat, min_lon, max_lat, max_lon
DEFAULT_REGION_BBOX = (45.0, -80.5, 53.5, -57.0)


@dataclass
class Config:
    # WMS
    wms_base: str = DEFAULT_WMS_BASE
    layer: str = DEFAULT_LAYER
    image_format: str = "image/png"
    transparent: bool = True
    use_wms: bool = True

    # Time series
    frame_count: int = 8
    frame_step_minutes: int = 6

    # Canvas / framing
    width: int = 1920
    height: int = 1080
    zoom: int = 8
    center_lat: float | None = None
    center_lon: float | None = None
    region_bbox: tuple[float, float, float, float] = DEFAULT_REGION_BBOX
    padding_degrees: float = 0.5
    ensure_cities: list[str] = field(default_factory=list)

    # Politeness
    request_delay_ms: int = 200
    http_timeout_sec: float = 15.0
    user_agent: str = "radarloop/0.1 (+contact)"

    # Alternate sources
    animation_url: str | None = None
    latest_url: str | None = None
    enable_province_radar: bool = True
    enable_city_radar: bool = False
    radar_cities: list[str] = field(default_factory=list)
    radar_feeds: dict[str, str] = field(default_factory=dict)

    # Compositing
    overlay_opacity: float = 0.75
    tile_url: str = DEFAULT_TILE_URL
    tile_cache_ttl_sec: int = 900
    map_background: str = "#D3D3D3"

    # Output / encoder
    output_dir: str = "output"
    prefix: str = "00_ProvinceRadar"
    fps: int = 5
    ffmpeg_path: str | None = None
    encoder_timeout_sec: float = 120.0

    # Runtime
    interval_sec: int = 0
    log_level: str = "INFO"

    @property
    def request_delay(self) -> float:
        return max(0, int(self.request_delay_ms)) / 1000.0

    def validate(self) -> "Config":
        if not (self.layer or "").strip():
            raise ConfigError("Radar layer name is empty")
        if not (self.wms_base or "").strip():
            raise ConfigError("WMS base URL is empty")
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"Invalid target size {self.width}x{self.height}")
        if self.frame_count < 1:
            raise ConfigError(f"Frame count must be at least 1 (got {self.frame_count})")
        if self.frame_step_minutes < 1:
            raise ConfigError(f"Frame step must be at least 1 minute (got {self.frame_step_minutes})")
        if not 0.0 <= self.overlay_opacity <= 1.0:
            raise ConfigError(f"Overlay opacity must be within [0, 1] (got {self.overlay_opacity})")
        if self.padding_degrees <= 0:
            raise ConfigError(f"Padding must be positive (got {self.padding_degrees})")
        min_lat, min_lon, max_lat, max_lon = self.region_bbox
        if min_lat >= max_lat or min_lon >= max_lon:
            raise ConfigError(f"Degenerate region bbox {self.region_bbox}")
        if (self.center_lat is None) != (self.center_lon is None):
            raise ConfigError("center_lat and center_lon must be given together")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Config":
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key not in known:
                log.warning("Ignoring unknown setting %r", key)
                continue
            values[key] = value
        if "region_bbox" in values and values["region_bbox"] is not None:
            values["region_bbox"] = tuple(float(v) for v in values["region_bbox"])
        return cls(**values)


def load_settings(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Settings file not found: {p}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Settings file {p} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {p} must contain a JSON object")
    return data


def _parse_feed(value: str) -> tuple[str, str]:
    name, sep, url = value.partition("=")
    if not sep or not name.strip() or not url.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=URL, got {value!r}")
    return name.strip(), url.strip()


def _parse_bbox(value: str) -> tuple[float, float, float, float]:
    parts = [p for p in value.replace(" ", "").split(",") if p]
    if len(parts) != 4:
        raise argparse.ArgumentTypeError(f"expected MIN_LAT,MIN_LON,MAX_LAT,MAX_LON, got {value!r}")
    try:
        return tuple(float(p) for p in parts)  # type: ignore[return-value]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(argv: list[str] | None = None) -> Config:
    S = argparse.SUPPRESS
    p = argparse.ArgumentParser("radarloop", argument_default=S)
    p.add_argument("--settings", type=str, help="JSON settings file; explicit flags override it")

    wms = p.add_argument_group("WMS")
    wms.add_argument("--wms-base", type=str, help=f"WMS endpoint (default {DEFAULT_WMS_BASE})")
    wms.add_argument("--layer", type=str, help=f"Radar layer (default {DEFAULT_LAYER})")
    wms.add_argument("--format", dest="image_format", type=str, help="GetMap image format (default image/png)")
    wms.add_argument("--no-transparent", dest="transparent", action="store_false")
    wms.add_argument("--no-wms", dest="use_wms", action="store_false",
                     help="Never build animations from WMS frames")

    frames = p.add_argument_group("Frames")
    frames.add_argument("--frames", dest="frame_count", type=int, help="Frames per animation (default 8)")
    frames.add_argument("--step-minutes", dest="frame_step_minutes", type=int,
                        help="Spacing of synthesized timestamps (default 6)")
    frames.add_argument("--delay-ms", dest="request_delay_ms", type=int,
                        help="Delay between WMS requests (default 200)")

    region = p.add_argument_group("Region")
    region.add_argument("--w", "--width", dest="width", type=int)
    region.add_argument("--h", "--height", dest="height", type=int)
    region.add_argument("--zoom", type=int, help="Zoom level for center/zoom framing (default 8)")
    region.add_argument("--lat", dest="center_lat", type=float, help="Center latitude for a location animation")
    region.add_argument("--lon", dest="center_lon", type=float, help="Center longitude for a location animation")
    region.add_argument("--region-bbox", type=_parse_bbox, help="MIN_LAT,MIN_LON,MAX_LAT,MAX_LON")
    region.add_argument("--padding", dest="padding_degrees", type=float,
                        help="Padding in degrees around must-include cities (default 0.5)")
    region.add_argument("--ensure-city", dest="ensure_cities", action="append",
                        help="City that must be visible in the province animation (repeatable)")

    sources = p.add_argument_group("Sources")
    sources.add_argument("--animation-url", type=str, help="Pre-rendered animation URL (gif/mp4)")
    sources.add_argument("--latest-url", type=str, help="Latest static radar URL")
    sources.add_argument("--no-province", dest="enable_province_radar", action="store_false")
    sources.add_argument("--city-radar", dest="enable_city_radar", action="store_true",
                         help="Also fetch per-city radar thumbnails")
    sources.add_argument("--city", dest="radar_cities", action="append",
                         help="City for radar thumbnails (repeatable)")
    sources.add_argument("--radar-feed", dest="radar_feeds", action="append", type=_parse_feed,
                         help="NAME=URL direct radar image for a city (repeatable)")

    out = p.add_argument_group("Output")
    out.add_argument("--out", dest="output_dir", type=str, help="Output directory (default ./output)")
    out.add_argument("--prefix", type=str, help="Output file prefix (default 00_ProvinceRadar)")
    out.add_argument("--opacity", dest="overlay_opacity", type=float, help="Radar overlay opacity (default 0.75)")
    out.add_argument("--fps", type=int, help="Animation frame rate (default 5)")
    out.add_argument("--ffmpeg", dest="ffmpeg_path", type=str, help="Path to ffmpeg; defaults to PATH lookup")
    out.add_argument("--encoder-timeout", dest="encoder_timeout_sec", type=float)

    rt = p.add_argument_group("Runtime")
    rt.add_argument("--interval-sec", type=int, help="Repeat every N seconds; 0 runs once")
    rt.add_argument("--user-agent", type=str)
    rt.add_argument("--http-timeout", dest="http_timeout_sec", type=float)
    rt.add_argument("--log-level", type=str)

    args = vars(p.parse_args(argv))

    values: dict[str, Any] = {}
    settings_path = args.pop("settings", None)
    if settings_path:
        values.update(load_settings(settings_path))
    if "radar_feeds" in args:
        feeds = dict(values.get("radar_feeds") or {})
        feeds.update(dict(args.pop("radar_feeds")))
        args["radar_feeds"] = feeds
    values.update(args)

    return Config.from_mapping(values)
