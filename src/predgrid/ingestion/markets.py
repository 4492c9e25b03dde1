"""Market metadata - resolve slug / market id to canonical id and grid origin."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from predgrid.grid.buckets import ms_to_iso, parse_ts_ms
from predgrid.models import MarketWindow

log = structlog.get_logger(__name__)


def market_query(
    market_id: str | None = None,
    slug: str | None = None,
    bucket_minutes: int = 1,
) -> dict[str, Any]:
    """Query params shared by /api/markets and /api/stream. market_id wins over slug."""
    if market_id:
        return {"market_id": market_id, "bucketMinutes": bucket_minutes}
    return {"slugs": slug or "", "bucketMinutes": bucket_minutes}


def parse_market_window(data: dict[str, Any], market_id: str | None = None, slug: str | None = None) -> MarketWindow:
    """Build MarketWindow from an /api/markets response body. Raises ValueError on bad windowStart."""
    window_start = data.get("windowStart") or ""
    origin_ms = parse_ts_ms(window_start)
    if origin_ms is None:
        raise ValueError("windowStart missing or invalid")
    markets = data.get("markets")
    if not market_id and isinstance(markets, list) and markets:
        first = markets[0] if isinstance(markets[0], dict) else {}
        market_id = first.get("market_id") or None
        slug = first.get("slug") or slug
    return MarketWindow(
        market_id=market_id or None,
        slug=slug or None,
        window_start=window_start,
        origin_ms=origin_ms,
    )


async def fetch_market_window(
    client: httpx.AsyncClient,
    base_url: str,
    market_id: str | None = None,
    slug: str | None = None,
    bucket_minutes: int = 1,
) -> MarketWindow:
    """GET /api/markets once per run. Raises httpx.HTTPError or ValueError on failure."""
    resp = await client.get(
        f"{base_url}/api/markets",
        params=market_query(market_id, slug, bucket_minutes),
    )
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError("unexpected /api/markets response")
    return parse_market_window(data, market_id=market_id, slug=slug)


def fallback_window(now_ms: int, width_ms: int, market_id: str | None = None, slug: str | None = None) -> MarketWindow:
    """Wall-clock-aligned origin one day of buckets back, used when metadata is unavailable."""
    origin_ms = (now_ms // width_ms) * width_ms - 24 * 60 * width_ms
    return MarketWindow(
        market_id=market_id or None,
        slug=slug or None,
        window_start=ms_to_iso(origin_ms),
        origin_ms=origin_ms,
    )
