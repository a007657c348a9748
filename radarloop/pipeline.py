from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests

from radarloop.config import Config
from radarloop.core.compositor import CompositedFrame, MapCompositor
from radarloop.core.processes import ExternalProcessRegistry
from radarloop.data.cities import city_coordinates
from radarloop.exceptions import FrameDecodeError
from radarloop.fetcher import FrameFetcher
from radarloop.geo import BoundingBox, BoundingBoxResolver
from radarloop.map_tiles import TileCache, compose_base_map
from radarloop.output.encoder import AnimationAssembler, AnimationOutput, remove_staging, stage_frames
from radarloop.sources import DEFAULT_SOURCES, SourceContext, download, run_chain
from radarloop.timeseries import TimeSeriesDiscovery
from radarloop.utils import sanitize_filename, utcnow
from radarloop.wms import FrameRequest

log = logging.getLogger(__name__)

PROVINCE_STAGING = "province_frames"
LOCATION_STAGING = "location_frames"
LOCATION_FRAME_NAME = "{index:02d}_RadarFrame.png"
LOCATION_FRAME_GLOB = "[0-9][0-9]_RadarFrame.png"
CITY_THUMB_SIZE = (400, 200)
CITY_THUMB_SPAN = 0.6


def make_session(cfg: Config) -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": cfg.user_agent, "Accept": "*/*"})
    return s


@dataclass
class RunResult:
    animation: Optional[AnimationOutput] = None
    stills: List[Path] = field(default_factory=list)
    location: Optional[AnimationOutput] = None
    city_images: Dict[str, Path] = field(default_factory=dict)


class RadarPipeline:
    """One radar build: discovery, framing, fetch, composite, encode.

    Owns the HTTP session, the process registry and the cancellation event;
    every stage degrades to a partial result instead of raising.
    """

    def __init__(
        self,
        cfg: Config,
        *,
        session: Optional[requests.Session] = None,
        registry: Optional[ExternalProcessRegistry] = None,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = utcnow,
        lookup: Callable[[str], Optional[Tuple[float, float]]] = city_coordinates,
    ):
        self.cfg = cfg.validate()
        self.session = session or make_session(cfg)
        self.registry = registry or ExternalProcessRegistry()
        self.cancel = cancel or threading.Event()
        self.output_dir = Path(cfg.output_dir)

        self.discovery = TimeSeriesDiscovery(self.session, cfg.wms_base, timeout=cfg.http_timeout_sec, clock=clock)
        self.resolver = BoundingBoxResolver(BoundingBox.from_tuple(cfg.region_bbox), lookup, cfg.padding_degrees)
        self.fetcher = FrameFetcher(
            self.session,
            cfg.wms_base,
            delay=cfg.request_delay,
            timeout=cfg.http_timeout_sec,
            cancel=self.cancel,
        )
        self.compositor = MapCompositor(cfg.overlay_opacity)
        self.assembler = AnimationAssembler(
            self.registry,
            cfg.width,
            cfg.height,
            fps=cfg.fps,
            ffmpeg_path=cfg.ffmpeg_path,
            timeout=cfg.encoder_timeout_sec,
            cancel=self.cancel,
        )
        self.tile_cache = TileCache(cfg.tile_cache_ttl_sec)
        self.lookup = lookup

    # ------------------------------------------------------------------

    def close(self) -> None:
        self.session.close()

    def _pause(self) -> None:
        delay = self.cfg.request_delay
        if delay > 0:
            self.cancel.wait(delay)

    def _base_map(self, lat: float, lon: float, zoom: int):
        return compose_base_map(
            lat,
            lon,
            zoom,
            self.cfg.width,
            self.cfg.height,
            self.session,
            tile_url=self.cfg.tile_url,
            cache=self.tile_cache,
            background=self.cfg.map_background,
            timeout=self.cfg.http_timeout_sec,
        ).image

    def _default_center(self) -> Tuple[float, float]:
        if self.cfg.center_lat is not None and self.cfg.center_lon is not None:
            return self.cfg.center_lat, self.cfg.center_lon
        return BoundingBox.from_tuple(self.cfg.region_bbox).center

    # ------------------------------------------------------------------

    def build_province_animation(self) -> AnimationOutput:
        """Raw WMS frames over the static region, stitched into {prefix}.gif/.mp4."""
        cfg = self.cfg
        count = max(2, cfg.frame_count)
        times = self.discovery.discover(cfg.layer, count, cfg.frame_step_minutes)
        bbox = self.resolver.static_region(cfg.ensure_cities)
        log.info("Province radar: %d frames of %s over %s", len(times), cfg.layer, bbox)

        results = self.fetcher.fetch(
            cfg.layer, bbox, cfg.width, cfg.height, times,
            image_format=cfg.image_format, transparent=cfg.transparent,
        )
        staging = self.output_dir / PROVINCE_STAGING
        paths = stage_frames([r.data if r.ok else None for r in results], staging)
        if not paths:
            log.warning("No radar frames fetched for %s; no province animation", cfg.layer)
            remove_staging(staging)

        output = self.assembler.assemble(paths, self.output_dir, cfg.prefix)
        if output.success:
            remove_staging(staging)
            output.frame_paths = []
        elif paths:
            log.warning("Raw radar frames kept in %s", staging)
        return output

    def build_location_animation(
        self,
        center_lat: float,
        center_lon: float,
        *,
        zoom: Optional[int] = None,
        assemble: bool = False,
        prefix: str = "RadarAnimation",
    ) -> AnimationOutput:
        """Radar composited over a base map around a point.

        Each frame is kept as {NN}_RadarFrame.png in the output directory; with
        ``assemble`` the frames are also encoded into {prefix}.gif/.mp4.
        """
        cfg = self.cfg
        zoom = cfg.zoom if zoom is None else int(zoom)
        times = self.discovery.discover(cfg.layer, cfg.frame_count, cfg.frame_step_minutes)
        bbox = self.resolver.center_zoom(center_lat, center_lon, zoom, cfg.width, cfg.height)
        log.info("Location radar at %.4f,%.4f zoom %d: %s", center_lat, center_lon, zoom, bbox)

        base = self._base_map(center_lat, center_lon, zoom)
        results = self.fetcher.fetch(
            cfg.layer, bbox, cfg.width, cfg.height, times,
            image_format=cfg.image_format, transparent=cfg.transparent,
        )

        for stale in self.output_dir.glob(LOCATION_FRAME_GLOB):
            stale.unlink()
        frames: List[CompositedFrame] = []
        paths: List[Path] = []
        for idx, result in enumerate(results):
            if not result.ok:
                continue
            try:
                frame = self.compositor.composite(base, result.data, idx, result.request.time)
            except FrameDecodeError as exc:
                log.warning("Skipping radar frame %d (%s): %s", idx, result.request.time, exc)
                continue
            paths.append(frame.save(self.output_dir / LOCATION_FRAME_NAME.format(index=len(frames))))
            frames.append(frame)

        log.info("Saved %d/%d composited radar frames", len(paths), len(results))
        if not assemble:
            return AnimationOutput(paths, success=bool(paths))

        staging = self.output_dir / LOCATION_STAGING
        staged = stage_frames([f.raster for f in frames], staging)
        anim = self.assembler.assemble(staged, self.output_dir, prefix)
        if anim.success:
            remove_staging(staging)
        return AnimationOutput(paths, anim.gif_path, anim.video_path, anim.success, anim.degraded, anim.message)

    def build_single_map(
        self,
        dest: Path | str,
        center_lat: Optional[float] = None,
        center_lon: Optional[float] = None,
        *,
        zoom: Optional[int] = None,
    ) -> Optional[Path]:
        """Latest radar frame over a base map, saved to ``dest``."""
        cfg = self.cfg
        if center_lat is None or center_lon is None:
            center_lat, center_lon = self._default_center()
        zoom = cfg.zoom if zoom is None else int(zoom)

        latest = self.discovery.discover(cfg.layer, 1, cfg.frame_step_minutes)[-1]
        bbox = self.resolver.center_zoom(center_lat, center_lon, zoom, cfg.width, cfg.height)
        base = self._base_map(center_lat, center_lon, zoom)
        result = self.fetcher.fetch_one(
            FrameRequest(cfg.layer, bbox, cfg.width, cfg.height, latest, cfg.image_format, cfg.transparent)
        )
        if not result.ok:
            log.warning("No radar image for %s; single map not written", latest)
            return None
        try:
            frame = self.compositor.composite(base, result.data, 0, latest)
        except FrameDecodeError as exc:
            log.warning("Latest radar image unusable: %s", exc)
            return None
        path = frame.save(dest)
        log.info("Radar map saved: %s", path)
        return path

    def fetch_city_radar(self) -> Dict[str, Path]:
        """Per-city thumbnails from direct feeds, else a small WMS GetMap."""
        cfg = self.cfg
        if not cfg.enable_city_radar:
            return {}
        names = list(cfg.radar_cities or [])
        names += [n for n in cfg.radar_feeds if n not in names]

        saved: Dict[str, Path] = {}
        for i, name in enumerate(names):
            if self.cancel.is_set():
                log.warning("City radar cancelled")
                break
            if i > 0:
                self._pause()
            safe = sanitize_filename(name)
            feed = cfg.radar_feeds.get(name)
            if feed:
                path = download(self.session, feed, self.output_dir / f"radar_{safe}", cfg.http_timeout_sec)
                if path is not None:
                    saved[name] = path
                continue
            if not cfg.use_wms:
                log.warning("No radar feed configured for %s", name)
                continue
            coords = self.lookup(name)
            if coords is None:
                log.warning("Unknown city for radar thumbnail: %s", name)
                continue
            lat, lon = coords
            bbox = BoundingBox(lat - CITY_THUMB_SPAN, lon - CITY_THUMB_SPAN, lat + CITY_THUMB_SPAN, lon + CITY_THUMB_SPAN)
            w, h = CITY_THUMB_SIZE
            result = self.fetcher.fetch_one(
                FrameRequest(cfg.layer, bbox, w, h, None, cfg.image_format, cfg.transparent)
            )
            if not result.ok:
                continue
            path = self.output_dir / f"radar_{safe}.png"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(result.data)
            saved[name] = path
        log.info("City radar images saved: %d/%d", len(saved), len(names))
        return saved

    def run_once(self) -> RunResult:
        cfg = self.cfg
        self.output_dir.mkdir(parents=True, exist_ok=True)
        run = RunResult()

        if cfg.enable_province_radar:
            ctx = SourceContext(
                cfg, self.session, self.output_dir,
                build_frames=self.build_province_animation, cancel=self.cancel,
            )
            run.animation = run_chain(DEFAULT_SOURCES, ctx)
            run.stills = list(ctx.stills)
            if run.animation is None or not run.animation.success:
                log.warning("No radar animation produced this run")

        if cfg.center_lat is not None and cfg.center_lon is not None and not self.cancel.is_set():
            run.location = self.build_location_animation(cfg.center_lat, cfg.center_lon)

        if not self.cancel.is_set():
            run.city_images = self.fetch_city_radar()
        return run
