from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple
from urllib.parse import urlencode

from radarloop.geo import BoundingBox
from radarloop.utils import format_wms_time, parse_iso_datetime, parse_iso_duration

log = logging.getLogger(__name__)

WMS_VERSION = "1.3.0"
WMS_CRS = "EPSG:4326"

# keep CRS/BBOX/TIME/FORMAT readable in logged URLs
_QUERY_SAFE = ":,/"


@dataclass(frozen=True)
class TimeDimension:
    """Either a start/end/step range or an ordered list of discrete instants."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    step: Optional[timedelta] = None
    discrete_times: Tuple[datetime, ...] = ()

    @property
    def is_range(self) -> bool:
        return self.start is not None and self.end is not None and self.step is not None

    def latest(self, count: int) -> list[str]:
        """Up to `count` instants, oldest first, formatted for the TIME parameter."""
        if count <= 0:
            return []
        if self.is_range:
            times: list[str] = []
            t = self.end
            for _ in range(count):
                if t < self.start:
                    break
                times.append(format_wms_time(t))
                t = t - self.step
            times.reverse()
            return times
        return [format_wms_time(t) for t in self.discrete_times[-count:]]


@dataclass(frozen=True)
class FrameRequest:
    layer: str
    bbox: BoundingBox
    width: int
    height: int
    time: Optional[str] = None
    format: str = "image/png"
    transparent: bool = True

    def url(self, base: str) -> str:
        return build_getmap_url(
            base,
            self.layer,
            self.bbox,
            self.width,
            self.height,
            image_format=self.format,
            time=self.time,
            transparent=self.transparent,
        )


def _join(base: str, params: dict) -> str:
    sep = "&" if "?" in base else "?"
    return f"{base}{sep}{urlencode(params, safe=_QUERY_SAFE)}"


def build_capabilities_url(base: str, layer: str) -> str:
    return _join(
        base,
        {
            "SERVICE": "WMS",
            "VERSION": WMS_VERSION,
            "REQUEST": "GetCapabilities",
            "LAYERS": layer,
        },
    )


def build_getmap_url(
    base: str,
    layer: str,
    bbox: BoundingBox,
    width: int,
    height: int,
    *,
    image_format: str = "image/png",
    time: Optional[str] = None,
    transparent: bool = True,
) -> str:
    # WMS 1.3.0 with EPSG:4326 mandates lat,lon axis order
    params = {
        "SERVICE": "WMS",
        "VERSION": WMS_VERSION,
        "REQUEST": "GetMap",
        "LAYERS": layer,
        "CRS": WMS_CRS,
        "BBOX": bbox.wms_param(),
        "WIDTH": int(width),
        "HEIGHT": int(height),
        "FORMAT": image_format,
    }
    if transparent:
        params["TRANSPARENT"] = "TRUE"
    if time:
        params["TIME"] = time
    return _join(base, params)


def _default_namespace(root: ET.Element) -> str:
    if root.tag.startswith("{"):
        return root.tag[1:].split("}", 1)[0]
    return ""


def _parse_range(content: str) -> Optional[TimeDimension]:
    parts = content.split("/")
    if len(parts) != 3:
        return None
    try:
        start = parse_iso_datetime(parts[0])
        end = parse_iso_datetime(parts[1])
    except ValueError:
        return None
    step = parse_iso_duration(parts[2])
    if step is None or end < start:
        return None
    return TimeDimension(start=start, end=end, step=step)


def _parse_discrete(content: str) -> Optional[TimeDimension]:
    values = [v.strip() for v in content.split(",") if v.strip()]
    if not values:
        return None
    try:
        times = tuple(sorted(parse_iso_datetime(v) for v in values))
    except ValueError:
        return None
    return TimeDimension(discrete_times=times)


def parse_time_dimension_text(content: str) -> Optional[TimeDimension]:
    content = (content or "").strip()
    if not content:
        return None
    if "/" in content:
        # several ranges may be listed; the newest one is last
        return _parse_range(content.split(",")[-1].strip())
    return _parse_discrete(content)


def resolve_time_dimension(xml_bytes: bytes | str) -> Optional[TimeDimension]:
    """Read the `time` Dimension of a GetCapabilities document.

    Returns None when the document is malformed, has no time dimension, or the
    dimension uses an encoding we do not understand.
    """
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError as exc:
        log.warning("Capabilities document is not valid XML: %s", exc)
        return None

    ns = _default_namespace(root)
    tag = f"{{{ns}}}Dimension" if ns else "Dimension"
    for dim in root.iter(tag):
        if (dim.get("name") or "").strip().lower() != "time":
            continue
        parsed = parse_time_dimension_text(dim.text or "")
        if parsed is None:
            log.warning("Unrecognised time dimension %r", (dim.text or "").strip()[:120])
        return parsed
    return None
