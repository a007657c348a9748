from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urlparse

WMS_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

ANIMATED_EXTENSIONS = (".gif", ".mp4")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    if not value:
        raise ValueError("Empty ISO datetime")
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# Only single-unit time durations are understood: PT6M, PT1H, PT30S.
_DURATION_RE = re.compile(r"PT(?P<value>\d+)(?P<unit>[HMS])", re.IGNORECASE)
_DURATION_UNITS = {"H": "hours", "M": "minutes", "S": "seconds"}


def parse_iso_duration(value: str) -> Optional[timedelta]:
    match = _DURATION_RE.fullmatch((value or "").strip())
    if not match:
        return None
    amount = int(match.group("value"))
    if amount <= 0:
        return None
    return timedelta(**{_DURATION_UNITS[match.group("unit").upper()]: amount})


def format_wms_time(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(WMS_TIME_FORMAT)


def sanitize_filename(name: str) -> str:
    clean = re.sub(r'[\\/:*?"<>|\x00-\x1f]', "_", name or "")
    return clean.replace(" ", "_")


def extension_for(content_type: str | None, url: str) -> str:
    """Pick a file extension from a Content-Type, else the URL path, else .png."""
    ct = (content_type or "").lower()
    if "gif" in ct:
        return ".gif"
    if "png" in ct:
        return ".png"
    if "jpeg" in ct or "jpg" in ct:
        return ".jpg"
    if "mp4" in ct or "video" in ct:
        return ".mp4"
    try:
        suffix = PurePosixPath(urlparse(url).path).suffix
    except ValueError:
        suffix = ""
    return suffix.lower() if suffix else ".png"


def is_animated_extension(ext: str) -> bool:
    return ext.lower() in ANIMATED_EXTENSIONS
