"""Bucket series state machine - classify each tick as PUSH, UPDATE_TAIL, MID_HIT or DROP."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from predgrid.grid.buckets import bucket_start_ms
from predgrid.models.tick import TickAction


@dataclass(slots=True)
class SeriesPoint:
    """One bucket of a series: bucket start (ms epoch) and its last-written price."""

    bucket_start_ms: int
    price: float


class BucketSeries:
    """Append-mostly sequence of SeriesPoint, one per distinct bucket start.

    Order is the order in which buckets were first pushed. A MID_HIT rewrites a
    point in place and never moves it, so after backfills the sequence is not
    guaranteed to be sorted by bucket start.
    """

    __slots__ = ("width_ms", "_points", "_index")

    def __init__(self, width_ms: int) -> None:
        self.width_ms = width_ms
        self._points: list[SeriesPoint] = []
        # bucket start -> position in _points
        self._index: dict[int, int] = {}

    def classify(self, ts_ms: int, price: float, origin_ms: int) -> TickAction:
        """Fold one tick into the series and return how it was classified.

        Order of checks: open tail bucket, any existing bucket, regression
        behind the tail (rejected without mutation), otherwise append.
        """
        bucket = bucket_start_ms(ts_ms, origin_ms, self.width_ms)
        tail = self._points[-1] if self._points else None

        if tail is not None and tail.bucket_start_ms == bucket:
            tail.price = price
            return TickAction.UPDATE_TAIL

        pos = self._index.get(bucket)
        if pos is not None:
            self._points[pos].price = price
            return TickAction.MID_HIT

        if tail is not None and bucket < tail.bucket_start_ms:
            return TickAction.DROP

        self._index[bucket] = len(self._points)
        self._points.append(SeriesPoint(bucket, price))
        return TickAction.PUSH

    def position(self, bucket: int) -> int | None:
        """Sequence position of the point for bucket, if present."""
        return self._index.get(bucket)

    @property
    def tail(self) -> SeriesPoint | None:
        return self._points[-1] if self._points else None

    def prices(self) -> list[float]:
        return [p.price for p in self._points]

    def points(self) -> list[SeriesPoint]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[SeriesPoint]:
        return iter(self._points)


def classify(series: BucketSeries, ts_ms: int, price: float, origin_ms: int) -> TickAction:
    """Classify one tick against series (mutating it on PUSH, UPDATE_TAIL and MID_HIT)."""
    return series.classify(ts_ms, price, origin_ms)
