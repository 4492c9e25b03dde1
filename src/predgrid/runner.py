"""Diagnostic run - one task per source feeding a single consumer that owns all state mutation."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import httpx
import structlog

from predgrid.config.settings import Settings
from predgrid.diagnostics.output import ReportWriter
from predgrid.diagnostics.reporter import DiagnosticReporter
from predgrid.grid.buckets import clamp_bucket_minutes, ms_to_iso
from predgrid.ingestion.adapter import SeenTicks, StreamCounters, StreamIngestionAdapter
from predgrid.ingestion.markets import fallback_window, fetch_market_window, market_query
from predgrid.ingestion.sse import connect_event_stream
from predgrid.models import MarketWindow
from predgrid.series.registry import SeriesRegistry
from predgrid.validation.poller import CrossValidationPoller, GroundTruthClient

log = structlog.get_logger(__name__)

_STOP = None


def _now_ms() -> float:
    return time.time() * 1000


class DiagnosticRun:
    """
    Resolve the grid origin, open the stream, and classify ticks until the deadline.

    Sources (stream reader, poll timer, summary timer) only enqueue; the consumer
    applies every item in arrival order, so series and counters have one writer.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        market_id: str | None = None,
        slug: str | None = None,
        writer: ReportWriter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock_ms: Callable[[], float] = _now_ms,
    ) -> None:
        self.settings = settings
        self.market_id = market_id
        self.slug = slug
        self.bucket_minutes = clamp_bucket_minutes(settings.bucket_minutes)
        self.width_ms = self.bucket_minutes * 60_000
        self.writer = writer or ReportWriter(settings.log_file)
        self._transport = transport
        self._clock_ms = clock_ms
        self.counters = StreamCounters(started_wall_ms=clock_ms())
        self.seen = SeenTicks()
        self.window: MarketWindow | None = None
        self.registry: SeriesRegistry | None = None
        self.adapter: StreamIngestionAdapter | None = None
        self.poller: CrossValidationPoller | None = None
        self.reporter: DiagnosticReporter | None = None
        self._queue: asyncio.Queue[tuple[Any, ...] | None] = asyncio.Queue()
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Request an early end of the run (final report still runs)."""
        self._stop.set()

    # -- setup -------------------------------------------------------------

    async def _resolve_window(self, client: httpx.AsyncClient) -> MarketWindow:
        self.writer.line("Fetching windowStart from /api/markets...")
        try:
            window = await fetch_market_window(
                client,
                self.settings.base_url,
                market_id=self.market_id,
                slug=self.slug,
                bucket_minutes=self.bucket_minutes,
            )
        except (httpx.HTTPError, ValueError) as e:
            log.warning("market_window_unavailable", error=str(e))
            self.writer.line(f"Failed to fetch windowStart: {e}")
            self.writer.line("Falling back to wall-clock bucket boundaries")
            window = fallback_window(int(self._clock_ms()), self.width_ms, self.market_id, self.slug)
        return window

    def _build_poller(self, client: httpx.AsyncClient, window: MarketWindow) -> CrossValidationPoller | None:
        s = self.settings
        if not s.ground_truth_url or not s.ground_truth_key:
            self.writer.line("⚠ ground truth url or key missing — DB comparison disabled")
            return None
        if not window.market_id:
            self.writer.line("⚠ no market resolved — DB comparison disabled")
            return None
        source = GroundTruthClient(
            client,
            s.ground_truth_url,
            s.ground_truth_key,
            table=s.ground_truth_table,
            market_id=window.market_id,
        )
        watermark = ms_to_iso(int(self._clock_ms() - s.lookback_sec * 1000))
        return CrossValidationPoller(
            source,
            self.seen,
            watermark,
            page_size=s.page_size,
            missed_limit=s.missed_limit,
        )

    def _wire(self, window: MarketWindow, poller: CrossValidationPoller | None) -> None:
        s = self.settings
        self.window = window
        self.poller = poller
        self.registry = SeriesRegistry(self.width_ms, window.origin_ms, clock_ms=self._clock_ms)
        self.reporter = DiagnosticReporter(
            self.registry,
            self.counters,
            self.writer,
            poller=poller,
            flat_threshold=s.flat_threshold,
            flat_run_alert=s.flat_run_alert,
            mid_hit_sample=s.mid_hit_sample,
            drop_sample=s.drop_sample,
            missed_sample=s.missed_sample,
            notable_limit=s.notable_limit,
            clock_ms=self._clock_ms,
        )
        self.adapter = StreamIngestionAdapter(
            self.registry,
            counters=self.counters,
            seen=self.seen,
            on_tick=self.reporter.record,
            on_movement=self.reporter.record_movement,
            on_error=self.reporter.record_stream_error,
            clock_ms=self._clock_ms,
        )

    # -- sources -----------------------------------------------------------

    def _enqueue_event(self, name: str, payload: Any) -> None:
        self._queue.put_nowait(("event", name, payload))

    async def _read_stream(self, chunks: Any) -> None:
        await self.adapter.read_loop(chunks, emit=self._enqueue_event)
        self._queue.put_nowait(("stream_end",))

    async def _summary_timer(self) -> None:
        n = 0
        while True:
            await asyncio.sleep(self.settings.summary_interval_sec)
            n += 1
            self._queue.put_nowait(("summary", n))

    async def _poll_timer(self) -> None:
        while True:
            await asyncio.sleep(self.settings.poll_interval_sec)
            page = await self.poller.fetch_page()
            self._queue.put_nowait(("poll", page))

    # -- consumer ----------------------------------------------------------

    def _apply(self, item: tuple[Any, ...]) -> None:
        kind = item[0]
        if kind == "event":
            self.adapter.handle_event(item[1], item[2])
        elif kind == "summary":
            n = item[1]
            self.reporter.emit_summary(f"Summary #{n} ({n * self.settings.summary_interval_sec:.0f}s)")
            self.registry.evict_idle(self.settings.idle_evict_sec * 1000)
        elif kind == "poll":
            page = item[1]
            if page is None:
                self.reporter.record_poll_failure(self.poller.last_error)
            else:
                self.reporter.record_poll(self.poller.reconcile(page.rows, page.last_ts))
        elif kind == "stream_end":
            self.writer.line("Stream ended.")

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            self._apply(item)

    def drain(self) -> int:
        """Apply everything already queued. Returns the number of items applied."""
        n = 0
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _STOP:
                continue
            self._apply(item)
            n += 1
        return n

    # -- run ---------------------------------------------------------------

    def _header(self) -> None:
        self.writer.raw(
            "=== Stream Bucket Diagnostic ===\n"
            f"Started: {ms_to_iso(int(self._clock_ms()))}\n"
            f"Duration: {self.settings.duration_sec / 60:g} minutes\n"
            f"Base URL: {self.settings.base_url}\n"
        )

    async def run(self) -> None:
        """Execute the run. Raises StreamConnectError if the stream handshake fails."""
        self._header()
        timeout = httpx.Timeout(30.0, connect=self.settings.connect_timeout_sec)
        async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
            window = await self._resolve_window(client)
            poller = self._build_poller(client, window)
            self._wire(window, poller)
            self.writer.lines(self.reporter.preamble_lines(window))

            stream_url = f"{self.settings.base_url}/api/stream"
            params = market_query(window.market_id or self.market_id, self.slug, self.bucket_minutes)
            self.writer.line(f"Connecting: {stream_url} {params}")
            resp = await connect_event_stream(
                client,
                stream_url,
                params,
                timeout=httpx.Timeout(self.settings.connect_timeout_sec, read=None),
            )
            try:
                await self._drive(resp)
            finally:
                await resp.aclose()
        self.reporter.emit_final()

    async def _drive(self, resp: httpx.Response) -> None:
        sources = [
            asyncio.create_task(self._read_stream(resp.aiter_bytes())),
            asyncio.create_task(self._summary_timer()),
        ]
        if self.poller is not None:
            sources.append(asyncio.create_task(self._poll_timer()))
        consumer = asyncio.create_task(self._consume())
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.settings.duration_sec)
        except asyncio.TimeoutError:
            log.info("run_deadline_reached", duration_sec=self.settings.duration_sec)
        finally:
            for task in sources:
                task.cancel()
            await asyncio.gather(*sources, return_exceptions=True)
            self._queue.put_nowait(_STOP)
            await consumer
            self.drain()
