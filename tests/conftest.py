"""
Pytest configuration and shared fixtures.

HTTP sessions are MagicMocks returning canned responses; images are built
in memory with Pillow.
"""

from io import BytesIO
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from radarloop.config import Config


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def cfg(tmp_path):
    """Small, fast configuration writing into a temp directory."""
    return Config(
        width=64,
        height=32,
        frame_count=4,
        request_delay_ms=0,
        output_dir=str(tmp_path / "out"),
        http_timeout_sec=1.0,
    )


# ============================================================================
# Image / HTTP Fixtures
# ============================================================================


@pytest.fixture
def png_bytes():
    """Factory for solid-colour PNG bytes."""

    def _make(size=(64, 32), color=(255, 0, 0, 255)) -> bytes:
        buf = BytesIO()
        Image.new("RGBA", size, color).save(buf, format="PNG")
        return buf.getvalue()

    return _make


@pytest.fixture
def make_response():
    """Factory for requests.Response stand-ins."""

    def _make(status=200, content=b"", content_type="image/png"):
        resp = MagicMock()
        resp.status_code = status
        resp.content = content
        resp.headers = {"Content-Type": content_type} if content_type else {}

        def _raise():
            if status >= 400:
                raise requests.HTTPError(f"{status} Error")

        resp.raise_for_status.side_effect = _raise
        return resp

    return _make


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)
