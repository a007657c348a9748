from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import requests

from radarloop.exceptions import DiscoveryError
from radarloop.utils import format_wms_time, utcnow
from radarloop.wms import TimeDimension, build_capabilities_url, resolve_time_dimension

log = logging.getLogger(__name__)


def synthesize_times(count: int, step_minutes: int, now: datetime) -> List[str]:
    """`count` instants spaced `step_minutes` apart, oldest first, ending at `now`."""
    count = max(1, int(count))
    step = timedelta(minutes=max(1, int(step_minutes)))
    return [format_wms_time(now - step * i) for i in range(count - 1, -1, -1)]


class TimeSeriesDiscovery:
    def __init__(
        self,
        session: requests.Session,
        wms_base: str,
        *,
        timeout: float = 15.0,
        clock: Callable[[], datetime] = utcnow,
        parser: Callable[[bytes], Optional[TimeDimension]] = resolve_time_dimension,
    ):
        self.session = session
        self.wms_base = wms_base
        self.timeout = timeout
        self.clock = clock
        self.parser = parser

    def fetch_capabilities(self, layer: str) -> bytes:
        url = build_capabilities_url(self.wms_base, layer)
        log.debug("GetCapabilities %s", url)
        resp = self.session.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.content

    def time_dimension(self, layer: str) -> TimeDimension:
        dim = self.parser(self.fetch_capabilities(layer))
        if dim is None:
            raise DiscoveryError(f"No usable time dimension advertised for {layer}")
        return dim

    def discover(self, layer: str, count: int, step_minutes: int) -> List[str]:
        """Timestamps to request for `layer`, oldest first; never empty."""
        count = max(1, int(count))
        try:
            times = self.time_dimension(layer).latest(count)
            if times:
                log.info("Found %d radar timestamps for %s (%s .. %s)", len(times), layer, times[0], times[-1])
                return times
            log.warning("Time dimension for %s yielded no instants", layer)
        except requests.RequestException as exc:
            log.warning("Capabilities request for %s failed: %s", layer, exc)
        except DiscoveryError as exc:
            log.warning("%s", exc)
        except Exception as exc:
            log.warning("Could not read time dimension for %s: %r", layer, exc)

        times = synthesize_times(count, step_minutes, self.clock())
        log.info("Generated %d fallback timestamps every %d minutes ending %s", len(times), step_minutes, times[-1])
        return times
