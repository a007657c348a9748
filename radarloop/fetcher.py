from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import requests

from radarloop.geo import BoundingBox
from radarloop.wms import FrameRequest

log = logging.getLogger(__name__)


@dataclass
class FrameResult:
    request: FrameRequest
    data: Optional[bytes] = None
    error: Optional[str] = None
    content_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.data)


class FrameFetcher:
    """Sequential, rate-limited GetMap fetches; one result per timestamp."""

    def __init__(
        self,
        session: requests.Session,
        wms_base: str,
        *,
        delay: float = 0.2,
        timeout: float = 15.0,
        cancel: Optional[threading.Event] = None,
    ):
        self.session = session
        self.wms_base = wms_base
        self.delay = max(0.0, float(delay))
        self.timeout = timeout
        self.cancel = cancel

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def _pause(self) -> None:
        if self.delay <= 0:
            return
        if self.cancel is not None:
            self.cancel.wait(self.delay)
        else:
            time.sleep(self.delay)

    def fetch_one(self, req: FrameRequest) -> FrameResult:
        url = req.url(self.wms_base)
        log.debug("GetMap %s", url)
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            log.warning("Radar fetch error for %s: %s", req.time or "latest", exc)
            return FrameResult(req, error=str(exc))

        if not 200 <= resp.status_code < 300:
            log.warning("Radar fetch failed for %s: HTTP %s", req.time or "latest", resp.status_code)
            return FrameResult(req, error=f"HTTP {resp.status_code}")

        data = resp.content
        if not data:
            log.warning("Radar fetch for %s returned no data", req.time or "latest")
            return FrameResult(req, error="empty response")
        return FrameResult(req, data=data, content_type=resp.headers.get("Content-Type"))

    def fetch(
        self,
        layer: str,
        bbox: BoundingBox,
        width: int,
        height: int,
        times: Sequence[Optional[str]],
        *,
        image_format: str = "image/png",
        transparent: bool = True,
    ) -> List[FrameResult]:
        results: List[FrameResult] = []
        total = len(times)
        for idx, t in enumerate(times):
            req = FrameRequest(layer, bbox, width, height, t, image_format, transparent)
            if self.cancelled:
                results.append(FrameResult(req, error="cancelled"))
                continue
            if idx > 0:
                self._pause()
                if self.cancelled:
                    results.append(FrameResult(req, error="cancelled"))
                    continue
            result = self.fetch_one(req)
            if result.ok:
                log.info("Radar frame %d/%d fetched (%d bytes)", idx + 1, total, len(result.data))
            results.append(result)

        fetched = sum(1 for r in results if r.ok)
        if self.cancelled:
            log.warning("Frame fetch cancelled after %d/%d frames", fetched, total)
        else:
            log.info("Fetched %d/%d radar frames", fetched, total)
        return results
