"""Stream ingestion adapter - read loop, event dispatch, global counters, seen-tick keys."""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

import httpx
import structlog
from pydantic import ValidationError

from predgrid.grid.buckets import parse_ts_ms
from predgrid.ingestion.sse import SSEDecoder
from predgrid.models import MovementEvent, StreamError, Tick
from predgrid.series.registry import ClassifiedTick, SeriesRegistry

log = structlog.get_logger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class StreamCounters:
    """Process-wide counters for one run."""

    ticks_received: int = 0
    trades_received: int = 0
    movements_received: int = 0
    errors_received: int = 0
    # tick events rejected before classification (bad payload, non-finite ts or mid)
    invalid_ticks: int = 0
    started_wall_ms: float = 0.0
    last_tick_wall_ms: float | None = None


def seen_key(market_id: str, ts: Any) -> tuple[str, int | str]:
    """(market_id, ts) identity shared by the stream and the ground truth.

    ts is compared as epoch ms so `...Z` and `...+00:00` renderings of the same
    instant match; unparseable values fall back to the raw string.
    """
    ms = parse_ts_ms(ts)
    return (market_id, ms if ms is not None else str(ts))


class SeenTicks:
    """Set of (market_id, ts) keys delivered by the stream."""

    def __init__(self) -> None:
        self._keys: set[tuple[str, int | str]] = set()

    def add(self, market_id: str, ts: Any) -> None:
        self._keys.add(seen_key(market_id, ts))

    def has(self, market_id: str, ts: Any) -> bool:
        return seen_key(market_id, ts) in self._keys

    def __len__(self) -> int:
        return len(self._keys)


def decode_tick(payload: Any) -> tuple[Tick, int] | None:
    """Validate a `tick` payload. Returns (tick, ts_ms) or None if it must not reach the engine."""
    if not isinstance(payload, dict):
        return None
    try:
        tick = Tick.model_validate(payload)
    except ValidationError:
        return None
    ts_ms = parse_ts_ms(tick.ts)
    if ts_ms is None or tick.mid is None or not math.isfinite(tick.mid):
        return None
    return tick, ts_ms


def decode_movement(payload: Any) -> MovementEvent | None:
    if not isinstance(payload, dict):
        return None
    try:
        return MovementEvent.model_validate(payload)
    except ValidationError:
        return None


def decode_error(payload: Any) -> StreamError:
    if isinstance(payload, dict) and payload.get("message") is not None:
        return StreamError(message=str(payload["message"]))
    return StreamError(message=str(payload))


class StreamIngestionAdapter:
    """Routes decoded stream events: ticks to the registry, the rest to counters and hooks."""

    def __init__(
        self,
        registry: SeriesRegistry,
        *,
        counters: StreamCounters | None = None,
        seen: SeenTicks | None = None,
        on_tick: Callable[[ClassifiedTick], None] | None = None,
        on_movement: Callable[[MovementEvent], None] | None = None,
        on_error: Callable[[StreamError], None] | None = None,
        clock_ms: Callable[[], float] = _now_ms,
    ) -> None:
        self.registry = registry
        self.counters = counters if counters is not None else StreamCounters(started_wall_ms=clock_ms())
        self.seen = seen if seen is not None else SeenTicks()
        self._on_tick = on_tick
        self._on_movement = on_movement
        self._on_error = on_error
        self._clock_ms = clock_ms

    def handle_event(self, name: str, payload: Any) -> ClassifiedTick | None:
        """Dispatch one (event_name, payload). Unknown event names are ignored."""
        if name == "tick":
            return self._handle_tick(payload)
        if name == "trade":
            self.counters.trades_received += 1
        elif name == "movement":
            self.counters.movements_received += 1
            movement = decode_movement(payload)
            if movement is None:
                log.debug("movement_undecodable", payload=payload)
            elif self._on_movement is not None:
                self._on_movement(movement)
        elif name == "error":
            self.counters.errors_received += 1
            err = decode_error(payload)
            log.warning("stream_error_event", message=err.message)
            if self._on_error is not None:
                self._on_error(err)
        return None

    def _handle_tick(self, payload: Any) -> ClassifiedTick | None:
        self.counters.ticks_received += 1
        self.counters.last_tick_wall_ms = self._clock_ms()
        decoded = decode_tick(payload)
        if decoded is None:
            self.counters.invalid_ticks += 1
            return None
        tick, ts_ms = decoded
        self.seen.add(tick.market_id, tick.ts)
        classified = self.registry.apply(tick.market_id, tick.outcome, tick.ts, ts_ms, tick.mid)
        if self._on_tick is not None:
            self._on_tick(classified)
        return classified

    async def read_loop(
        self,
        chunks: AsyncIterator[bytes],
        emit: Callable[[str, Any], None] | None = None,
    ) -> None:
        """
        Decode chunks until end-of-stream, passing each event to emit (default: handle_event).
        Every event decoded from a chunk is emitted before the next read is awaited, so a
        cancellation never loses events from a chunk already received.
        """
        emit = emit or self.handle_event
        decoder = SSEDecoder()
        try:
            async for chunk in chunks:
                for name, payload in decoder.feed(chunk):
                    emit(name, payload)
        except asyncio.CancelledError:
            log.info("stream_read_cancelled", pending_bytes=len(decoder.pending))
            raise
        except httpx.HTTPError as e:
            log.warning("stream_read_error", error=str(e))
            return
        log.info("stream_ended")
