"""Market metadata resolution tests."""

import httpx
import pytest

from predgrid.grid.buckets import parse_ts_ms
from predgrid.ingestion.markets import (
    fallback_window,
    fetch_market_window,
    market_query,
    parse_market_window,
)

BASE = "http://stream.test"


def test_market_query_prefers_market_id():
    assert market_query("m1", "btc-updown", 5) == {"market_id": "m1", "bucketMinutes": 5}
    assert market_query(None, "btc-updown", 1) == {"slugs": "btc-updown", "bucketMinutes": 1}
    assert market_query() == {"slugs": "", "bucketMinutes": 1}


def test_parse_market_window_takes_first_market():
    data = {
        "windowStart": "2026-02-19T06:00:00.250Z",
        "markets": [{"market_id": "0xabc", "slug": "btc-updown"}, {"market_id": "0xdef"}],
    }
    window = parse_market_window(data, slug="btc")
    assert window.market_id == "0xabc"
    assert window.slug == "btc-updown"
    assert window.origin_ms == parse_ts_ms("2026-02-19T06:00:00.250Z")


def test_parse_market_window_keeps_explicit_id():
    window = parse_market_window({"windowStart": "2026-02-19T06:00:00Z", "markets": [{"market_id": "other"}]}, "m1")
    assert window.market_id == "m1"


@pytest.mark.parametrize("data", [{}, {"windowStart": ""}, {"windowStart": "yesterday"}])
def test_parse_market_window_rejects_bad_origin(data):
    with pytest.raises(ValueError):
        parse_market_window(data)


def test_fallback_window_is_wall_aligned_one_day_back():
    width = 5 * 60_000
    now = 1_771_484_523_456
    window = fallback_window(now, width, market_id="m1")
    assert window.origin_ms % width == 0
    assert window.origin_ms == (now // width) * width - 24 * 60 * width
    assert window.market_id == "m1"
    assert window.window_start.endswith("Z")


@pytest.mark.asyncio
async def test_fetch_market_window_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"windowStart": "2026-02-19T06:00:00Z", "markets": []})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        window = await fetch_market_window(client, BASE, slug="btc-updown", bucket_minutes=5)
    assert seen[0].url.path == "/api/markets"
    assert seen[0].url.params["slugs"] == "btc-updown"
    assert seen[0].url.params["bucketMinutes"] == "5"
    assert window.market_id is None
    assert window.slug == "btc-updown"


@pytest.mark.asyncio
async def test_fetch_market_window_http_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await fetch_market_window(client, BASE, market_id="m1")
