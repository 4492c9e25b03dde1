"""Bucket grid - origin-aligned and wall-clock-aligned bucket starts, timestamp helpers."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from typing import Any

MINUTE_MS = 60_000
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
DEFAULT_BUCKET_MINUTES = 1


def bucket_start_ms(ts_ms: int, origin_ms: int, width_ms: int) -> int:
    """Start of the bucket containing ts_ms on the grid anchored at origin_ms.

    Floor division, so timestamps before the origin map to earlier buckets
    rather than being rounded toward it.
    """
    return origin_ms + ((ts_ms - origin_ms) // width_ms) * width_ms


def wall_bucket_start_ms(ts_ms: int, width_ms: int) -> int:
    """Start of the bucket containing ts_ms on the epoch-aligned (wall-clock) grid."""
    return bucket_start_ms(ts_ms, 0, width_ms)


def grid_drift_ms(origin_ms: int, width_ms: int) -> int:
    """Fixed offset between the origin-aligned and wall-clock grids. 0 means identical grids."""
    return origin_ms % width_ms


def clamp_bucket_minutes(value: Any) -> int:
    """Non-numeric, non-finite or non-positive -> default; otherwise floor, minimum 1."""
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return DEFAULT_BUCKET_MINUTES
    if not math.isfinite(minutes) or minutes <= 0:
        return DEFAULT_BUCKET_MINUTES
    return max(1, math.floor(minutes))


def bucket_width_ms(bucket_minutes: Any) -> int:
    return clamp_bucket_minutes(bucket_minutes) * MINUTE_MS


def parse_ts_ms(value: Any) -> int | None:
    """Parse an ISO-8601 timestamp (or epoch ms number) to epoch ms. None if unparseable or non-finite.

    Timestamps without an offset are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def ms_to_iso(ms: int) -> str:
    """Epoch ms -> `YYYY-MM-DDTHH:MM:SS.mmmZ`."""
    dt = _EPOCH + timedelta(milliseconds=ms)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def clock(ms: int, millis: bool = False) -> str:
    """Time-of-day part of ms_to_iso: HH:MM:SS or HH:MM:SS.mmm."""
    iso = ms_to_iso(ms)
    return iso[11:23] if millis else iso[11:19]
