"""Bucket series classification tests."""

from predgrid.models import TickAction
from predgrid.series.engine import BucketSeries, SeriesPoint, classify

W = 60_000


def _pts(series):
    return [(p.bucket_start_ms, p.price) for p in series]


def test_in_order_distinct_buckets_all_push():
    s = BucketSeries(W)
    ticks = [0, 60_000, 125_000, 181_000, 600_000]
    actions = [classify(s, ts, 0.5 + i / 100, 0) for i, ts in enumerate(ticks)]
    assert actions == [TickAction.PUSH] * len(ticks)
    assert len(s) == 5
    assert [p.bucket_start_ms for p in s] == [0, 60_000, 120_000, 180_000, 600_000]


def test_same_bucket_updates_tail_last_write_wins():
    s = BucketSeries(W)
    assert classify(s, 60_000, 0.40, 0) is TickAction.PUSH
    for i, ts in enumerate((60_500, 70_000, 119_999)):
        assert classify(s, ts, 0.41 + i / 100, 0) is TickAction.UPDATE_TAIL
    assert len(s) == 1
    assert s.tail == SeriesPoint(60_000, 0.43)


def test_mid_hit_updates_in_place_without_moving():
    s = BucketSeries(W)
    for ts, p in ((0, 0.1), (60_000, 0.2), (120_000, 0.3)):
        classify(s, ts, p, 0)
    assert classify(s, 65_000, 0.25, 0) is TickAction.MID_HIT
    assert _pts(s) == [(0, 0.1), (60_000, 0.25), (120_000, 0.3)]
    assert s.position(60_000) == 1
    assert classify(s, 1, 0.15, 0) is TickAction.MID_HIT
    assert _pts(s) == [(0, 0.15), (60_000, 0.25), (120_000, 0.3)]


def test_regression_behind_tail_is_dropped_without_mutation():
    s = BucketSeries(W)
    classify(s, 120_000, 0.5, 0)
    classify(s, 240_000, 0.6, 0)
    before = _pts(s)
    assert classify(s, 60_000, 0.9, 0) is TickAction.DROP
    assert classify(s, 180_000, 0.9, 0) is TickAction.DROP
    assert _pts(s) == before
    assert s.position(60_000) is None


def test_push_drop_scenario():
    s = BucketSeries(W)
    seq = [(60_000, 1.0), (90_000, 1.1), (120_000, 1.2), (100_000, 1.05), (30_000, 0.9)]
    actions = [classify(s, ts, p, 0) for ts, p in seq]
    assert actions == [
        TickAction.PUSH,
        TickAction.UPDATE_TAIL,
        TickAction.PUSH,
        TickAction.MID_HIT,
        TickAction.DROP,
    ]
    assert _pts(s) == [(60_000, 1.05), (120_000, 1.2)]


def test_late_tick_into_existing_first_bucket_is_mid_hit_not_drop():
    # A tick behind the tail whose bucket already exists is a MID_HIT; only
    # buckets absent from the series are rejected.
    s = BucketSeries(W)
    seq = [(0, 1.0), (30_000, 1.1), (60_000, 1.2), (45_000, 1.05), (50_000, 0.9)]
    actions = [classify(s, ts, p, 0) for ts, p in seq]
    assert actions == [
        TickAction.PUSH,
        TickAction.UPDATE_TAIL,
        TickAction.PUSH,
        TickAction.MID_HIT,
        TickAction.MID_HIT,
    ]
    assert _pts(s) == [(0, 0.9), (60_000, 1.2)]


def test_origin_aligned_buckets():
    s = BucketSeries(W)
    origin = 15_000
    assert classify(s, 70_000, 0.5, origin) is TickAction.PUSH
    assert s.tail.bucket_start_ms == 15_000
    assert classify(s, 74_999, 0.6, origin) is TickAction.UPDATE_TAIL
    assert classify(s, 75_000, 0.7, origin) is TickAction.PUSH
    assert _pts(s) == [(15_000, 0.6), (75_000, 0.7)]


def test_bucket_starts_strictly_increasing_for_any_arrival_order():
    s = BucketSeries(W)
    for ts in (300_000, 10_000, 420_000, 310_000, 0, 900_000, 899_000, 60_000, 1_000_000):
        classify(s, ts, 0.5, 0)
    starts = [p.bucket_start_ms for p in s]
    assert starts == sorted(set(starts))
    assert s.prices() == [0.5] * len(s)
