"""Textual TUI dashboard - stream health, per-series classification table, bucket chart."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
from textual.app import App, ComposeResult
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static

from predgrid.diagnostics.chart import render_chart
from predgrid.diagnostics.output import ReportWriter
from predgrid.ingestion.sse import StreamConnectError
from predgrid.models import TickAction
from predgrid.runner import DiagnosticRun

log = structlog.get_logger(__name__)


class HealthPanel(Static):
    """Stream status and global counters."""

    status = reactive("Starting...")
    ticks = reactive(0)
    trades = reactive(0)
    moves = reactive(0)
    errors = reactive(0)
    since_last = reactive("n/a")

    def render(self) -> str:
        return (
            f"[bold]Status[/] {self.status}  |  "
            f"Ticks: {self.ticks}  Trades: {self.trades}  Moves: {self.moves}  Errors: {self.errors}  |  "
            f"Last tick: {self.since_last}"
        )


class SeriesTable(DataTable):
    """One row per (market, outcome): series length, classification counts, tail price."""

    COLUMNS = ("Series", "Len", "PUSH", "UPDATE", "MID_HIT", "DROP", "Price")

    def on_mount(self) -> None:
        self.cursor_type = "row"
        self.add_columns(*self.COLUMNS)

    def refresh_rows(self, diag: DiagnosticRun) -> None:
        if diag.registry is None:
            return
        cursor = self.cursor_row
        self.clear()
        for st in diag.registry:
            tail = st.series.tail
            self.add_row(
                str(st.key)[:40],
                str(len(st.series)),
                str(st.counts[TickAction.PUSH]),
                str(st.counts[TickAction.UPDATE_TAIL]),
                str(st.counts[TickAction.MID_HIT]),
                str(st.counts[TickAction.DROP]),
                f"{tail.price:.4f}" if tail is not None else "-",
            )
        if self.row_count:
            self.move_cursor(row=min(cursor, self.row_count - 1))


class ChartPanel(Static):
    """ASCII chart of the selected series."""


class GridWatchTUI(App[None]):
    """Live view of bucket classification while a diagnostic run is in progress."""

    TITLE = "predgrid"
    BINDINGS = [("q", "quit", "Quit")]

    def __init__(self, diag: DiagnosticRun, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._diag = diag
        self._run_task: asyncio.Task[None] | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield HealthPanel(id="health")
        yield SeriesTable(id="series")
        yield ChartPanel("  (no data yet)", id="chart")
        yield Footer()

    def on_mount(self) -> None:
        self._run_task = asyncio.create_task(self._run())
        self.set_interval(2.0, self._refresh)

    async def _run(self) -> None:
        health = self.query_one(HealthPanel)
        try:
            health.status = "Connecting"
            await self._diag.run()
            health.status = "Finished"
        except StreamConnectError as e:
            log.error("stream_connect_failed", error=str(e))
            health.status = f"Failed: {e}"
        except Exception as e:
            log.exception("diagnostic_run_failed", error=str(e))
            health.status = f"Failed: {e}"

    def _refresh(self) -> None:
        diag = self._diag
        cnt = diag.counters
        health = self.query_one(HealthPanel)
        if diag.registry is not None and health.status == "Connecting":
            health.status = "Streaming"
        health.ticks = cnt.ticks_received
        health.trades = cnt.trades_received
        health.moves = cnt.movements_received
        health.errors = cnt.errors_received
        if cnt.last_tick_wall_ms:
            health.since_last = f"{(time.time() * 1000 - cnt.last_tick_wall_ms) / 1000:.1f}s ago"
        table = self.query_one(SeriesTable)
        table.refresh_rows(diag)
        if diag.registry is None:
            return
        states = diag.registry.states()
        if states:
            st = states[min(table.cursor_row, len(states) - 1)]
            chart = "\n".join([str(st.key)[:60]] + render_chart(st.series.points()))
            self.query_one(ChartPanel).update(chart)

    def on_unmount(self) -> None:
        self._diag.stop()
        if self._run_task and not self._run_task.done():
            self._run_task.cancel()


def run_tui(settings: Any, market_id: str | None = None, slug: str | None = None) -> None:
    """Entry point: diagnostic run with file-only report output, rendered live in the TUI."""
    writer = ReportWriter(settings.log_file, console=None)
    diag = DiagnosticRun(settings, market_id=market_id, slug=slug, writer=writer)
    app = GridWatchTUI(diag)
    app.run()
