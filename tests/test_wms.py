"""
Tests for WMS URL building and time-dimension parsing.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl, urlsplit

import pytest

from radarloop.geo import BoundingBox
from radarloop.wms import (
    FrameRequest,
    build_capabilities_url,
    build_getmap_url,
    parse_time_dimension_text,
    resolve_time_dimension,
)

CAPS_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<WMS_Capabilities version="1.3.0" xmlns="http://www.opengis.net/wms">
  <Capability>
    <Layer>
      <Name>RADAR_1KM_RRAI</Name>
      <Dimension name="elevation" units="m">0</Dimension>
      <Dimension name="{name}" units="ISO8601">{text}</Dimension>
    </Layer>
  </Capability>
</WMS_Capabilities>
"""


def caps(text, name="time") -> bytes:
    return CAPS_TEMPLATE.format(name=name, text=text).encode("utf-8")


# ============================================================================
# URLs
# ============================================================================


class TestUrls:
    def test_getmap_parameters_in_order(self):
        bbox = BoundingBox(45.0, -80.5, 53.5, -57.0)
        url = build_getmap_url(
            "https://geo.weather.gc.ca/geomet",
            "RADAR_1KM_RRAI",
            bbox,
            1920,
            1080,
            time="2024-05-01T12:00:00Z",
        )
        assert url == (
            "https://geo.weather.gc.ca/geomet?SERVICE=WMS&VERSION=1.3.0&REQUEST=GetMap"
            "&LAYERS=RADAR_1KM_RRAI&CRS=EPSG:4326&BBOX=45.0,-80.5,53.5,-57.0"
            "&WIDTH=1920&HEIGHT=1080&FORMAT=image/png&TRANSPARENT=TRUE"
            "&TIME=2024-05-01T12:00:00Z"
        )

    def test_getmap_optional_parameters_omitted(self):
        url = build_getmap_url("http://h/wms", "L", BoundingBox(1.0, 2.0, 3.0, 4.0), 10, 20, transparent=False)
        params = dict(parse_qsl(urlsplit(url).query))
        assert "TRANSPARENT" not in params
        assert "TIME" not in params
        assert params["BBOX"] == "1.0,2.0,3.0,4.0"

    def test_base_with_existing_query(self):
        url = build_capabilities_url("http://h/wms?map=radar", "L")
        assert url.startswith("http://h/wms?map=radar&SERVICE=WMS")
        assert url.endswith("REQUEST=GetCapabilities&LAYERS=L")

    def test_frame_request_fully_determines_url(self):
        req = FrameRequest("L", BoundingBox(1.0, 2.0, 3.0, 4.0), 10, 20, "2024-01-01T00:00:00Z", "image/jpeg", False)
        assert req.url("http://h/wms") == build_getmap_url(
            "http://h/wms", "L", req.bbox, 10, 20,
            image_format="image/jpeg", time="2024-01-01T00:00:00Z", transparent=False,
        )


# ============================================================================
# Time dimension
# ============================================================================


class TestTimeDimension:
    @pytest.mark.parametrize(
        "period,step",
        [("PT6M", timedelta(minutes=6)), ("PT1H", timedelta(hours=1)), ("PT30S", timedelta(seconds=30))],
    )
    def test_range_forms(self, period, step):
        dim = resolve_time_dimension(caps(f"2024-05-01T10:00:00Z/2024-05-01T12:00:00Z/{period}"))
        assert dim is not None and dim.is_range
        assert dim.step == step

        times = dim.latest(5)
        assert 0 < len(times) <= 5
        assert times == sorted(times)
        assert times[-1] == "2024-05-01T12:00:00Z"

    def test_range_stops_at_start(self):
        dim = parse_time_dimension_text("2024-05-01T11:50:00Z/2024-05-01T12:00:00Z/PT6M")
        assert dim.latest(8) == ["2024-05-01T11:54:00Z", "2024-05-01T12:00:00Z"]

    def test_unsupported_duration_is_absent(self):
        assert parse_time_dimension_text("2024-05-01T10:00:00Z/2024-05-01T12:00:00Z/P1D") is None
        assert parse_time_dimension_text("2024-05-01T10:00:00Z/2024-05-01T12:00:00Z/PT0M") is None

    def test_reversed_range_rejected(self):
        assert parse_time_dimension_text("2024-05-01T12:00:00Z/2024-05-01T10:00:00Z/PT6M") is None

    def test_discrete_takes_last_n(self):
        text = ",".join(f"2024-05-01T12:{m:02d}:00Z" for m in range(0, 60, 10))
        dim = resolve_time_dimension(caps(text))
        assert not dim.is_range
        assert dim.latest(2) == ["2024-05-01T12:40:00Z", "2024-05-01T12:50:00Z"]

    def test_discrete_with_bad_instant_is_absent(self):
        assert parse_time_dimension_text("2024-05-01T12:00:00Z,not-a-time") is None

    def test_last_range_of_several_used(self):
        dim = parse_time_dimension_text(
            "2024-04-01T00:00:00Z/2024-04-02T00:00:00Z/PT1H,2024-05-01T00:00:00Z/2024-05-01T01:00:00Z/PT10M"
        )
        assert dim.end == datetime(2024, 5, 1, 1, 0, tzinfo=timezone.utc)

    def test_missing_time_dimension(self):
        assert resolve_time_dimension(caps("0,100", name="elevation_alt")) is None

    def test_case_insensitive_name(self):
        assert resolve_time_dimension(caps("2024-05-01T12:00:00Z", name="TIME")) is not None

    def test_malformed_xml(self):
        assert resolve_time_dimension(b"<WMS_Capabilities><oops") is None
