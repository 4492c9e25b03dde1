"""Bucket grid unit tests."""

from datetime import UTC, datetime, timedelta

import pytest

from predgrid.grid.buckets import (
    bucket_start_ms,
    bucket_width_ms,
    clamp_bucket_minutes,
    clock,
    grid_drift_ms,
    ms_to_iso,
    parse_ts_ms,
    wall_bucket_start_ms,
)

W = 60_000


def test_bucket_start_origin_aligned():
    assert bucket_start_ms(70_000, 15_000, W) == 15_000
    assert bucket_start_ms(80_000, 15_000, W) == 75_000
    assert bucket_start_ms(75_000, 15_000, W) == 75_000


def test_bucket_start_before_origin_floors_down():
    assert bucket_start_ms(10_000, 15_000, W) == -45_000
    assert bucket_start_ms(-1, 0, W) == -60_000


def test_wall_bucket_is_zero_origin():
    for ts in (0, 59_999, 60_000, 1_771_484_412_345):
        assert wall_bucket_start_ms(ts, W) == bucket_start_ms(ts, 0, W)


@pytest.mark.parametrize("origin", [0, 15_000, 1_771_484_400_000, 1_771_484_400_250, -7])
def test_bucket_start_idempotent(origin):
    for ts in range(1_771_484_000_000, 1_771_484_600_000, 7_919):
        b = bucket_start_ms(ts, origin, W)
        assert bucket_start_ms(b, origin, W) == b
        assert b <= ts < b + W


def test_grids_identical_when_origin_on_boundary():
    origin = 1_771_484_400_000  # multiple of 60s
    assert grid_drift_ms(origin, W) == 0
    for ts in range(origin - 300_000, origin + 300_000, 1_337):
        assert bucket_start_ms(ts, origin, W) == wall_bucket_start_ms(ts, W)


def test_grids_differ_near_boundary_when_origin_offset():
    origin = 1_771_484_400_250
    assert grid_drift_ms(origin, W) == 250
    boundary = 1_771_484_460_000
    # within the drift after a wall boundary: origin grid places the tick one bucket earlier
    assert wall_bucket_start_ms(boundary + 100, W) == boundary
    assert bucket_start_ms(boundary + 100, origin, W) == boundary - W + 250
    # past the drift both grids agree on the bucket index
    assert bucket_start_ms(boundary + 300, origin, W) == boundary + 250


def test_clamp_bucket_minutes():
    assert clamp_bucket_minutes(5) == 5
    assert clamp_bucket_minutes(2.7) == 2
    assert clamp_bucket_minutes(0.5) == 1
    assert clamp_bucket_minutes(0) == 1
    assert clamp_bucket_minutes(-3) == 1
    assert clamp_bucket_minutes(float("nan")) == 1
    assert clamp_bucket_minutes("abc") == 1
    assert bucket_width_ms(15) == 900_000


def test_parse_ts_ms_iso_variants():
    epoch = datetime(1970, 1, 1, tzinfo=UTC)
    expected = (datetime(2026, 2, 19, 6, 0, 1, 123000, tzinfo=UTC) - epoch) // timedelta(milliseconds=1)
    assert parse_ts_ms("2026-02-19T06:00:01.123Z") == expected
    assert parse_ts_ms("2026-02-19T06:00:01.123+00:00") == expected
    assert parse_ts_ms("2026-02-19T06:00:01.123") == expected
    assert parse_ts_ms("2026-02-19T07:00:01.123+01:00") == expected


def test_parse_ts_ms_rejects_bad_values():
    assert parse_ts_ms(None) is None
    assert parse_ts_ms("") is None
    assert parse_ts_ms("not a date") is None
    assert parse_ts_ms(float("nan")) is None
    assert parse_ts_ms(float("inf")) is None
    assert parse_ts_ms(True) is None
    assert parse_ts_ms(1_000) == 1_000


def test_ms_to_iso_and_clock():
    ms = parse_ts_ms("2026-02-19T06:07:08.009Z")
    assert ms_to_iso(ms) == "2026-02-19T06:07:08.009Z"
    assert clock(ms) == "06:07:08"
    assert clock(ms, millis=True) == "06:07:08.009"
