from __future__ import annotations
import struct
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from radarloop.exceptions import FrameDecodeError

RadarSource = Union[bytes, bytearray, Image.Image]


@dataclass
class CompositedFrame:
    index: int
    raster: Image.Image
    source_time: Optional[str]

    def save(self, path: Union[str, Path]) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        self.raster.save(p, format="PNG")
        return p


def decode_radar(data: RadarSource) -> Image.Image:
    if isinstance(data, Image.Image):
        return data.convert("RGBA")
    if not data:
        raise FrameDecodeError("No radar bytes to decode")
    try:
        img = Image.open(BytesIO(bytes(data)))
        img.load()
        return img.convert("RGBA")
    except (UnidentifiedImageError, OSError, EOFError, SyntaxError, ValueError, struct.error,
            Image.DecompressionBombError) as exc:
        # corrupt chunks surface as SyntaxError/ValueError from the PNG plugin
        raise FrameDecodeError(f"Undecodable radar image: {exc}") from exc


def with_opacity(img: Image.Image, opacity: float) -> Image.Image:
    if opacity >= 1.0:
        return img
    alpha = np.asarray(img.getchannel("A"), dtype=np.float32) * max(0.0, opacity)
    out = img.copy()
    out.putalpha(Image.fromarray(np.clip(np.rint(alpha), 0, 255).astype(np.uint8), "L"))
    return out


class MapCompositor:
    """Draws a radar raster over a base map that covers the same bounding box."""

    def __init__(self, opacity: float = 0.75):
        self.opacity = float(opacity)

    def overlay(self, base: Image.Image, radar: RadarSource) -> Image.Image:
        canvas = base if base.mode == "RGBA" else base.convert("RGBA")
        layer = decode_radar(radar)
        if layer.size != canvas.size:
            layer = layer.resize(canvas.size, Image.LANCZOS)
        layer = with_opacity(layer, self.opacity)
        # alpha_composite returns a new image; the shared base map is never touched
        return Image.alpha_composite(canvas, layer)

    def composite(
        self,
        base: Image.Image,
        radar: RadarSource,
        index: int = 0,
        source_time: Optional[str] = None,
    ) -> CompositedFrame:
        return CompositedFrame(index, self.overlay(base, radar), source_time)
