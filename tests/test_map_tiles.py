"""
Tests for base-map composition and its offline grid fallback.
"""

from unittest.mock import patch

import requests

from radarloop.geo import BoundingBox
from radarloop.map_tiles import TileCache, compose_base_map, draw_grid_background


class TestComposeBaseMap:
    def test_tiles_pasted(self, session, make_response, png_bytes):
        session.get.return_value = make_response(content=png_bytes((256, 256), (0, 128, 0, 255)))

        comp = compose_base_map(47.3, -74.5, 8, 300, 200, session)

        assert comp.image.size == (300, 200)
        assert comp.tiles_loaded > 0
        assert not comp.is_fallback
        assert comp.image.getpixel((150, 100)) == (0, 128, 0, 255)
        url = session.get.call_args_list[0][0][0]
        assert url.startswith("https://tile.openstreetmap.org/8/")

    def test_grid_fallback_when_no_tiles(self, session):
        session.get.side_effect = requests.ConnectionError("offline")

        comp = compose_base_map(47.3, -74.5, 8, 300, 200, session)

        assert comp.is_fallback
        assert comp.image.size == (300, 200)
        assert comp.bounds.min_lat < 47.3 < comp.bounds.max_lat
        assert comp.bounds.min_lon < -74.5 < comp.bounds.max_lon

    def test_cache_reused(self, session, make_response, png_bytes):
        session.get.return_value = make_response(content=png_bytes((256, 256)))
        cache = TileCache(ttl=60)

        compose_base_map(47.3, -74.5, 8, 100, 100, session, cache=cache)
        first = session.get.call_count
        compose_base_map(47.3, -74.5, 8, 100, 100, session, cache=cache)

        assert session.get.call_count == first

    def test_expired_cache_refetches(self, session, make_response, png_bytes):
        session.get.return_value = make_response(content=png_bytes((256, 256)))
        cache = TileCache(ttl=60)
        with patch("radarloop.map_tiles.time.time", return_value=1000.0):
            compose_base_map(47.3, -74.5, 8, 100, 100, session, cache=cache)
        first = session.get.call_count
        with patch("radarloop.map_tiles.time.time", return_value=2000.0):
            compose_base_map(47.3, -74.5, 8, 100, 100, session, cache=cache)

        assert session.get.call_count == 2 * first


class TestGridBackground:
    def test_crosshair_and_size(self):
        img = draw_grid_background(200, 120, BoundingBox(46.0, -76.0, 48.0, -73.0))

        assert img.size == (200, 120)
        # background is greener than red everywhere except the crosshair
        column = [img.getpixel((110, y)) for y in range(56, 65)]
        assert any(p[0] > p[1] + 50 for p in column)
        assert img.getpixel((5, 115))[1] >= img.getpixel((5, 115))[0]
