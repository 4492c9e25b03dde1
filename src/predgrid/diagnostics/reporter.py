"""Diagnostic reporter - per-key summaries, verbose event lines and the final anomaly report."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Callable

from predgrid.grid.buckets import clock, grid_drift_ms, ms_to_iso, wall_bucket_start_ms
from predgrid.models import MarketWindow, MovementEvent, StreamError, TickAction
from predgrid.series.registry import ClassifiedTick, OutcomeState, SeriesRegistry

if TYPE_CHECKING:
    from predgrid.diagnostics.output import ReportWriter
    from predgrid.ingestion.adapter import StreamCounters
    from predgrid.validation.poller import CrossValidationPoller, PollResult

RULE = "═" * 59


def _now_ms() -> float:
    return time.time() * 1000


def mean_max(values: list[float]) -> tuple[float, float] | None:
    """(average, maximum) of values, None when empty."""
    if not values:
        return None
    return sum(values) / len(values), max(values)


def longest_flat_run(prices: list[float], threshold: float = 1e-4) -> int:
    """Longest run of consecutive steps with |Δprice| < threshold (counted in steps)."""
    longest = run = 0
    for prev, cur in zip(prices, prices[1:]):
        if abs(cur - prev) < threshold:
            run += 1
            longest = max(longest, run)
        else:
            run = 0
    return longest


def _pct(part: int, total: int) -> str:
    return f"{part / total * 100:.1f}" if total > 0 else "0.0"


def _sec(ms: float) -> str:
    return f"{ms / 1000:.1f}s"


def _short(text: str | None, n: int = 16) -> str:
    return (text or "")[:n]


class DiagnosticReporter:
    """Read-only view over the registry, counters and poller, rendered as report lines.

    The *_lines methods build text; the emit_* and record_* methods write it.
    """

    def __init__(
        self,
        registry: SeriesRegistry,
        counters: StreamCounters,
        writer: ReportWriter,
        *,
        poller: CrossValidationPoller | None = None,
        flat_threshold: float = 1e-4,
        flat_run_alert: int = 5,
        mid_hit_sample: int = 20,
        drop_sample: int = 10,
        missed_sample: int = 20,
        notable_limit: int = 5000,
        clock_ms: Callable[[], float] = _now_ms,
    ) -> None:
        self.registry = registry
        self.counters = counters
        self.writer = writer
        self.poller = poller
        self.flat_threshold = flat_threshold
        self.flat_run_alert = flat_run_alert
        self.mid_hit_sample = mid_hit_sample
        self.drop_sample = drop_sample
        self.missed_sample = missed_sample
        self.notable_limit = notable_limit
        self._clock_ms = clock_ms
        # MID_HIT and DROP records, oldest first, capped at notable_limit
        self.notable: list[ClassifiedTick] = []
        self.drift_ticks = 0

    @property
    def width_ms(self) -> int:
        return self.registry.width_ms

    @property
    def origin_ms(self) -> int:
        return self.registry.origin_ms

    # -- event hooks -------------------------------------------------------

    def record(self, ct: ClassifiedTick) -> None:
        """Verbose file-only line for a classified tick; keeps MID_HIT/DROP samples."""
        tail = f"mid={ct.mid:.4f} market={_short(ct.key.market_id)} outcome={ct.key.outcome or None}"
        when = clock(ct.ts_ms, millis=True)
        bucket = clock(ct.bucket_ms)
        if ct.drift_ms != 0:
            self.drift_ticks += 1
            self.writer.line(
                f"[bucket-drift] {when} tick→bucket={bucket} wall={clock(ct.wall_bucket_ms)}"
                f" drift={ct.drift_ms}ms market={_short(ct.key.market_id)} outcome={ct.key.outcome or None}",
                file_only=True,
            )
        if ct.action is TickAction.MID_HIT:
            self.writer.line(
                f"[mid-hit] ts={when} bucket={bucket} idx={ct.position}/{ct.series_len - 1} (not tail) {tail}",
                file_only=True,
            )
        elif ct.action is TickAction.DROP:
            st = self.registry.get(ct.key)
            last = st.series.tail if st is not None else None
            last_s = clock(last.bucket_start_ms) if last is not None else "none"
            self.writer.line(f"[drop] ts={when} bucket={bucket} < last={last_s} {tail}", file_only=True)
        elif ct.action is TickAction.PUSH:
            self.writer.line(
                f"[push] ts={when} bucket={bucket} series_len={ct.series_len} {tail}",
                file_only=True,
            )
        if ct.action in (TickAction.MID_HIT, TickAction.DROP) and len(self.notable) < self.notable_limit:
            self.notable.append(ct)

    def record_movement(self, mv: MovementEvent) -> None:
        self.writer.line(
            f"[movement] {mv.window_type} market={_short(mv.market_id)} outcome={mv.outcome}"
            f" window={mv.window_start[11:19]}→{mv.window_end[11:19]}"
        )

    def record_stream_error(self, err: StreamError) -> None:
        self.writer.line(f"[sse-error] {err.message}")

    def record_poll(self, result: PollResult) -> None:
        if result.rows == 0:
            return
        self.writer.line(
            f"[db-poll] {result.rows} DB ticks | {result.missed} not seen by SSE | watermark={result.watermark}"
        )

    def record_poll_failure(self, error: str | None) -> None:
        self.writer.line(f"[db-poll] error: {error}")

    # -- preamble ----------------------------------------------------------

    def preamble_lines(self, window: MarketWindow) -> list[str]:
        drift = grid_drift_ms(self.origin_ms, self.width_ms)
        lines = [
            f"windowStart: {window.window_start}  (origin_ms={window.origin_ms})",
            f"Market: {_short(window.market_id, 32) or 'n/a'} slug={window.slug or 'n/a'}",
            f"wall-clock bucket boundary: {ms_to_iso(wall_bucket_start_ms(self.origin_ms, self.width_ms))}",
            f"origin-aligned boundary:    {ms_to_iso(self.origin_ms)}",
        ]
        if drift == 0:
            lines.append("origin is on a wall-clock bucket boundary (grids are identical)")
        else:
            lines.append(f"⚠ origin offset from wall clock: +{drift}ms — bucket grids DIFFER by {drift}ms")
        return lines

    # -- summaries ---------------------------------------------------------

    def key_lines(self, st: OutcomeState) -> list[str]:
        total = st.total
        c = st.counts
        gaps = mean_max(st.gaps)
        gap_s = f"avg={_sec(gaps[0])} max={_sec(gaps[1])}" if gaps else "avg=n/a max=n/a"
        tail = st.series.tail
        price_s = f"{tail.price:.4f}" if tail is not None else "n/a"
        lines = [
            f"  [{str(st.key)[:40]}] series={len(st.series)} total={total}"
            f"  PUSH={c[TickAction.PUSH]} UPDATE={c[TickAction.UPDATE_TAIL]}"
            f" MID_HIT={c[TickAction.MID_HIT]}({_pct(c[TickAction.MID_HIT], total)}%)"
            f" DROP={c[TickAction.DROP]}({_pct(c[TickAction.DROP], total)}%)"
            f"  tickGap {gap_s}  price={price_s}"
        ]
        push_gaps = mean_max(st.bucket_gaps)
        if push_gaps:
            lines.append(
                f"    bucket-push gaps: avg={_sec(push_gaps[0])} max={_sec(push_gaps[1])}"
                f"  (expected ~{self.width_ms / 1000:.0f}s per bucket)"
            )
        if c[TickAction.MID_HIT] > 0:
            lines.append(
                f"    ⚠ {c[TickAction.MID_HIT]} MID-HITS — ticks updating non-tail buckets"
                " (backfill or out-of-order delivery)"
            )
        return lines

    def summary_lines(self, label: str) -> list[str]:
        now = self._clock_ms()
        cnt = self.counters
        last = f"{(now - cnt.last_tick_wall_ms) / 1000:.1f}s ago" if cnt.last_tick_wall_ms else "never"
        lines = [
            f"── {label} " + "─" * 40,
            f"  Elapsed: {(now - cnt.started_wall_ms) / 1000:.0f}s",
            f"  SSE ticks: {cnt.ticks_received}  trades: {cnt.trades_received}"
            f"  moves: {cnt.movements_received}  errors: {cnt.errors_received}"
            f"  invalid: {cnt.invalid_ticks}",
            f"  Last tick: {last}",
        ]
        for st in self.registry:
            if st.total:
                lines.extend(self.key_lines(st))
        lines.append("")
        return lines

    def emit_summary(self, label: str) -> None:
        self.writer.lines(self.summary_lines(label))

    # -- final report ------------------------------------------------------

    def alignment_lines(self) -> list[str]:
        drift = grid_drift_ms(self.origin_ms, self.width_ms)
        lines = ["── Bucket alignment analysis " + "─" * 28]
        if drift == 0:
            lines.append("  Bucket grids: IDENTICAL (wall-clock aligned)")
            return lines
        lines += [
            f"  Bucket grids: DIFFER by {drift}ms",
            f"  Wall-clock grid:     {clock(wall_bucket_start_ms(self.origin_ms, self.width_ms))},"
            f" {clock(wall_bucket_start_ms(self.origin_ms, self.width_ms) + self.width_ms)} ...",
            f"  Origin-aligned grid: {clock(self.origin_ms)}, {clock(self.origin_ms + self.width_ms)} ...",
            f"  {self.drift_ticks} ticks landed in different buckets on the two grids",
            "  → Ticks near a bucket boundary may land in different buckets depending on grid",
        ]
        return lines

    def mid_hit_lines(self) -> list[str]:
        hits = [e for e in self.notable if e.action is TickAction.MID_HIT]
        total = sum(st.counts[TickAction.MID_HIT] for st in self.registry)
        lines = ["── Mid-hit analysis " + "─" * 37]
        if total == 0:
            lines.append("  No mid-hits detected — series grew cleanly")
            return lines
        lines.append(f"  {total} mid-hits detected:")
        for e in hits[: self.mid_hit_sample]:
            sign = "+" if e.inter_tick_gap_ms > 0 else ""
            lines.append(
                f"    {clock(e.ts_ms, millis=True)} → bucket {clock(e.bucket_ms)}"
                f" mid={e.mid:.4f} ({sign}{e.inter_tick_gap_ms}ms from prev tick)"
                f" [{str(e.key)[:40]}]"
            )
        if total > self.mid_hit_sample:
            lines.append(f"    ... and {total - min(self.mid_hit_sample, len(hits))} more")
        return lines

    def drop_lines(self) -> list[str]:
        drops = [e for e in self.notable if e.action is TickAction.DROP]
        total = sum(st.counts[TickAction.DROP] for st in self.registry)
        lines = ["── Drop analysis " + "─" * 40]
        if total == 0:
            lines.append("  No drops — all ticks arrived in chronological order")
            return lines
        lines.append(f"  {total} drops (out-of-order or stale ticks):")
        for e in drops[: self.drop_sample]:
            lines.append(
                f"    {clock(e.ts_ms, millis=True)} → bucket {clock(e.bucket_ms)}"
                f" was BEFORE tail, gap={e.inter_tick_gap_ms}ms [{str(e.key)[:40]}]"
            )
        if total > self.drop_sample:
            lines.append(f"    ... and {total - min(self.drop_sample, len(drops))} more")
        return lines

    def missed_lines(self) -> list[str]:
        p = self.poller
        if p is None:
            return ["  Cross-validation disabled — no ground truth compared"]
        if p.missed_total:
            lines = [f"── DB ticks missing from SSE ({p.missed_total}) " + "─" * 20]
            for t in p.missed[: self.missed_sample]:
                mid = f"{t.mid:.4f}" if t.mid is not None else "null"
                lines.append(f"  DB ts={t.ts[11:23]} mid={mid} market={_short(t.market_id)}")
            if p.missed_total > self.missed_sample:
                lines.append(f"  ... and {p.missed_total - min(self.missed_sample, len(p.missed))} more")
            return lines
        if p.rows_checked == 0:
            return [f"  No DB ticks compared ({p.polls} polls, {p.failures} failures)"]
        return [f"  SSE covered all {p.rows_checked} DB ticks in comparison window"]

    def series_lines(self) -> list[str]:
        lines = ["── Price series per outcome " + "─" * 29]
        for st in self.registry:
            prices = st.series.prices()
            if not prices:
                continue
            lo, hi = min(prices), max(prices)
            lines.append(
                f"  [{str(st.key)[:40]}] series={len(prices)} first={prices[0]:.4f} last={prices[-1]:.4f}"
                f" range=[{lo:.4f}–{hi:.4f}] spread={(hi - lo) * 100:.2f}pp"
            )
            flat = longest_flat_run(prices, self.flat_threshold)
            if flat > self.flat_run_alert:
                lines.append(
                    f"    ⚠ Longest flat run: {flat} consecutive identical-price buckets"
                    " (possible stalled series)"
                )
        return lines

    def final_report_lines(self) -> list[str]:
        lines = [RULE, "FINAL REPORT", RULE]
        lines += self.summary_lines("Final")
        lines += self.alignment_lines()
        lines += [""] + self.mid_hit_lines()
        lines += [""] + self.drop_lines()
        lines += [""] + self.missed_lines()
        lines += [""] + self.series_lines()
        lines += ["", RULE]
        return lines

    def emit_final(self) -> None:
        self.writer.lines(self.final_report_lines())
        if self.writer.log_file is not None:
            self.writer.line(f"Full log: {self.writer.log_file}")
        self.writer.line("Done.")
