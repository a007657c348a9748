"""Ordered animation sources: pre-rendered URL, latest still, then WMS frames.

Each source is a plain function taking a ``SourceContext`` and returning an
``AnimationOutput`` or ``None``. ``run_chain`` tries them in order and stops at
the first one that yields an animation.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import requests

from radarloop.config import Config
from radarloop.output.encoder import AnimationOutput
from radarloop.utils import extension_for, is_animated_extension

log = logging.getLogger(__name__)


@dataclass
class SourceContext:
    config: Config
    session: requests.Session
    output_dir: Path
    build_frames: Callable[[], Optional[AnimationOutput]]
    cancel: Optional[threading.Event] = None
    stills: List[Path] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def pause(self) -> None:
        delay = self.config.request_delay
        if delay <= 0:
            return
        if self.cancel is not None:
            self.cancel.wait(delay)
        else:
            time.sleep(delay)


Source = Callable[[SourceContext], Optional[AnimationOutput]]


def download(session: requests.Session, url: str, dest_stem: Path, timeout: float = 15.0) -> Optional[Path]:
    """Save ``url`` as ``dest_stem`` plus an extension derived from the response."""
    try:
        resp = session.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        log.warning("Download of %s failed: %s", url, exc)
        return None
    if not resp.content:
        log.warning("Download of %s returned no data", url)
        return None
    ext = extension_for(resp.headers.get("Content-Type"), url)
    path = dest_stem.with_name(dest_stem.name + ext)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(resp.content)
    log.info("Saved %s (%d bytes)", path, len(resp.content))
    return path


def _as_animation(path: Path) -> AnimationOutput:
    if path.suffix.lower() == ".mp4":
        return AnimationOutput([], video_path=path, success=True)
    return AnimationOutput([], gif_path=path, success=True)


def explicit_animation_url(ctx: SourceContext) -> Optional[AnimationOutput]:
    url = ctx.config.animation_url
    if not url:
        return None
    log.info("Fetching pre-rendered radar animation from %s", url)
    path = download(ctx.session, url, ctx.output_dir / ctx.config.prefix, ctx.config.http_timeout_sec)
    ctx.pause()
    if path is None:
        return None
    if is_animated_extension(path.suffix):
        return _as_animation(path)
    log.warning("Animation URL returned a non-animated %s; trying next source", path.suffix)
    ctx.stills.append(path)
    return None


def latest_static_url(ctx: SourceContext) -> Optional[AnimationOutput]:
    url = ctx.config.latest_url
    if not url:
        return None
    log.info("Fetching latest radar image from %s", url)
    path = download(ctx.session, url, ctx.output_dir / ctx.config.prefix, ctx.config.http_timeout_sec)
    ctx.pause()
    if path is None:
        return None
    if is_animated_extension(path.suffix):
        return _as_animation(path)
    log.info("Latest radar saved as still image %s", path.name)
    ctx.stills.append(path)
    return None


def wms_frames(ctx: SourceContext) -> Optional[AnimationOutput]:
    if not ctx.config.use_wms:
        log.info("WMS frame animation disabled")
        return None
    return ctx.build_frames()


DEFAULT_SOURCES: Sequence[Source] = (explicit_animation_url, latest_static_url, wms_frames)


def run_chain(sources: Sequence[Source], ctx: SourceContext) -> Optional[AnimationOutput]:
    """First successful animation, else the last partial result, else None."""
    fallback: Optional[AnimationOutput] = None
    for source in sources:
        if ctx.cancelled:
            log.warning("Radar source chain cancelled before %s", source.__name__)
            break
        result = source(ctx)
        if result is None:
            continue
        if result.success:
            log.info("Radar animation provided by %s", source.__name__)
            return result
        fallback = result
    return fallback
