"""Series registry tests - keys, counters, gap samples, eviction."""

import pytest

from predgrid.models import TickAction
from predgrid.series.registry import SeriesKey, SeriesRegistry

W = 60_000


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return SeriesRegistry(W, 0, clock_ms=clock)


def test_key_normalizes_missing_outcome():
    assert SeriesKey.of("m1", None) == SeriesKey.of("m1", "")
    assert SeriesKey.of("m1", None) != SeriesKey.of("m1", "Yes")
    assert str(SeriesKey.of("m1", "Yes")) == "m1:Yes"
    # structured keys do not collide where "a:b" + "c" and "a" + "b:c" would
    assert SeriesKey("a:b", "c") != SeriesKey("a", "b:c")


def test_state_created_lazily_per_key(registry):
    assert len(registry) == 0
    registry.apply("m1", "Yes", "t", 0, 0.5)
    registry.apply("m1", "No", "t", 0, 0.5)
    registry.apply("m1", "Yes", "t", 1_000, 0.6)
    assert len(registry) == 2
    st = registry.get(SeriesKey.of("m1", "Yes"))
    assert st.counts[TickAction.PUSH] == 1
    assert st.counts[TickAction.UPDATE_TAIL] == 1
    assert st.total == 2


def test_gaps_recorded_for_every_tick_including_drops(registry):
    registry.apply("m1", None, "t", 120_000, 0.5)
    ct = registry.apply("m1", None, "t", 5_000, 0.5)
    assert ct.action is TickAction.DROP
    assert ct.inter_tick_gap_ms == -115_000
    registry.apply("m1", None, "t", 130_000, 0.5)
    st = registry.get(SeriesKey.of("m1", None))
    assert st.gaps == [115_000, 125_000]
    assert st.last_tick_ts_ms == 130_000


def test_first_tick_has_zero_gap(registry):
    ct = registry.apply("m1", None, "t", 42_000, 0.5)
    assert ct.inter_tick_gap_ms == 0
    assert registry.get(SeriesKey.of("m1", None)).gaps == []


def test_bucket_gaps_use_wall_clock_on_push_only(registry, clock):
    registry.apply("m1", None, "t", 0, 0.5)
    clock.now += 2_500
    registry.apply("m1", None, "t", 10_000, 0.5)  # UPDATE_TAIL
    clock.now += 60_000
    registry.apply("m1", None, "t", 60_000, 0.5)  # PUSH
    clock.now += 61_000
    registry.apply("m1", None, "t", 120_000, 0.5)  # PUSH
    st = registry.get(SeriesKey.of("m1", None))
    assert st.bucket_gaps == [62_500, 61_000]
    assert st.last_bucket_wall_ms == clock.now


def test_classified_tick_context():
    reg = SeriesRegistry(W, 15_000)
    reg.apply("m1", "Yes", "a", 15_000, 0.4)
    reg.apply("m1", "Yes", "b", 80_000, 0.5)
    ct = reg.apply("m1", "Yes", "c", 20_000, 0.45)
    assert ct.action is TickAction.MID_HIT
    assert ct.bucket_ms == 15_000
    assert ct.wall_bucket_ms == 0
    assert ct.drift_ms == 15_000
    assert ct.position == 0
    assert ct.series_len == 2
    assert ct.key == SeriesKey("m1", "Yes")


def test_evict_idle(registry, clock):
    registry.apply("m1", None, "t", 0, 0.5)
    clock.now += 10_000
    registry.apply("m2", None, "t", 0, 0.5)
    clock.now += 5_000
    assert registry.evict_idle(0) == []
    evicted = registry.evict_idle(12_000)
    assert evicted == [SeriesKey("m1", "")]
    assert registry.get(SeriesKey("m1", "")) is None
    assert registry.get(SeriesKey("m2", "")) is not None
