"""Series registry - one OutcomeState per (market_id, outcome), fed from validated ticks."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, NamedTuple

import structlog

from predgrid.grid.buckets import bucket_start_ms, wall_bucket_start_ms
from predgrid.models.tick import TickAction
from predgrid.series.engine import BucketSeries

log = structlog.get_logger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


class SeriesKey(NamedTuple):
    """Identity of one logical price series. Missing outcome is normalized to ""."""

    market_id: str
    outcome: str

    @classmethod
    def of(cls, market_id: str, outcome: str | None) -> SeriesKey:
        return cls(market_id, outcome or "")

    def __str__(self) -> str:
        return f"{self.market_id}:{self.outcome}"


@dataclass
class OutcomeState:
    """Series plus the per-key counters and interval samples read by the reporter."""

    key: SeriesKey
    series: BucketSeries
    last_tick_ts_ms: int | None = None
    counts: dict[TickAction, int] = field(default_factory=lambda: {a: 0 for a in TickAction})
    # |ts - previous ts| for consecutive ticks of this key (DROPs included)
    gaps: list[int] = field(default_factory=list)
    # wall-clock ms between consecutive PUSHes
    bucket_gaps: list[float] = field(default_factory=list)
    last_bucket_wall_ms: float | None = None
    last_seen_wall_ms: float = 0.0

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True, slots=True)
class ClassifiedTick:
    """Outcome of folding one tick: what the engine decided plus the diagnostic context."""

    key: SeriesKey
    ts: str
    ts_ms: int
    mid: float
    bucket_ms: int
    wall_bucket_ms: int
    action: TickAction
    inter_tick_gap_ms: int
    wall_ms: float
    series_len: int
    position: int | None

    @property
    def drift_ms(self) -> int:
        """Origin-aligned bucket minus wall-clock bucket for this tick."""
        return self.bucket_ms - self.wall_bucket_ms


class SeriesRegistry:
    """Owns every OutcomeState. The single mutator of series and per-key counters."""

    def __init__(
        self,
        width_ms: int,
        origin_ms: int,
        clock_ms: Callable[[], float] = _now_ms,
    ) -> None:
        self.width_ms = width_ms
        self.origin_ms = origin_ms
        self._clock_ms = clock_ms
        self._states: dict[SeriesKey, OutcomeState] = {}

    def state(self, key: SeriesKey) -> OutcomeState:
        """Return the state for key, creating it on first use."""
        st = self._states.get(key)
        if st is None:
            st = OutcomeState(key=key, series=BucketSeries(self.width_ms))
            self._states[key] = st
        return st

    def get(self, key: SeriesKey) -> OutcomeState | None:
        return self._states.get(key)

    def apply(
        self,
        market_id: str,
        outcome: str | None,
        ts: str,
        ts_ms: int,
        mid: float,
    ) -> ClassifiedTick:
        """Classify one validated tick and update the key's counters and gap samples."""
        wall_ms = self._clock_ms()
        st = self.state(SeriesKey.of(market_id, outcome))
        st.last_seen_wall_ms = wall_ms

        gap = ts_ms - st.last_tick_ts_ms if st.last_tick_ts_ms is not None else 0
        if st.last_tick_ts_ms is not None:
            st.gaps.append(abs(gap))
        st.last_tick_ts_ms = ts_ms

        action = st.series.classify(ts_ms, mid, self.origin_ms)
        st.counts[action] += 1

        if action is TickAction.PUSH:
            if st.last_bucket_wall_ms is not None:
                st.bucket_gaps.append(wall_ms - st.last_bucket_wall_ms)
            st.last_bucket_wall_ms = wall_ms

        bucket = bucket_start_ms(ts_ms, self.origin_ms, self.width_ms)
        return ClassifiedTick(
            key=st.key,
            ts=ts,
            ts_ms=ts_ms,
            mid=mid,
            bucket_ms=bucket,
            wall_bucket_ms=wall_bucket_start_ms(ts_ms, self.width_ms),
            action=action,
            inter_tick_gap_ms=gap,
            wall_ms=wall_ms,
            series_len=len(st.series),
            position=st.series.position(bucket),
        )

    def evict_idle(self, idle_ms: float) -> list[SeriesKey]:
        """Drop states that have not received a tick for idle_ms. Returns evicted keys."""
        if idle_ms <= 0:
            return []
        cutoff = self._clock_ms() - idle_ms
        evicted = [k for k, st in self._states.items() if st.last_seen_wall_ms < cutoff]
        for k in evicted:
            del self._states[k]
        if evicted:
            log.info("series_evicted", count=len(evicted), remaining=len(self._states))
        return evicted

    def states(self) -> list[OutcomeState]:
        return list(self._states.values())

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[OutcomeState]:
        return iter(list(self._states.values()))
