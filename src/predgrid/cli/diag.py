"""Diag subcommand: run, grid."""

from __future__ import annotations

import asyncio
import signal
import sys

import typer

from predgrid.config.settings import Settings
from predgrid.grid.buckets import (
    bucket_width_ms,
    clock,
    grid_drift_ms,
    ms_to_iso,
    parse_ts_ms,
    wall_bucket_start_ms,
)
from predgrid.ingestion.sse import StreamConnectError
from predgrid.runner import DiagnosticRun

app = typer.Typer(help="Stream bucket diagnostics")


def apply_run_options(
    settings: Settings,
    *,
    minutes: float | None = None,
    bucket_minutes: float | None = None,
    base_url: str | None = None,
    port: int | None = None,
    log_file: str | None = None,
) -> None:
    """Fold per-run CLI options into settings. --port rewrites base_url to localhost:<port>."""
    if port is not None and base_url is None:
        base_url = f"http://localhost:{port}"
    settings.override(
        "stream",
        duration_minutes=minutes,
        bucket_minutes=bucket_minutes,
        base_url=base_url,
    )
    settings.override("report", log_file=log_file)


@app.command("run")
def run(
    ctx: typer.Context,
    slug: str | None = typer.Option(None, "--slug", "-s", help="Market slug (auto-detected if omitted)"),
    market_id: str | None = typer.Option(None, "--market-id", "-m", help="Market ID (wins over --slug)"),
    minutes: float | None = typer.Option(None, "--minutes", help="Run duration (overrides config)"),
    bucket_minutes: float | None = typer.Option(None, "--bucket-minutes", help="Bucket width in minutes"),
    base_url: str | None = typer.Option(None, "--base-url", help="Stream server base URL"),
    port: int | None = typer.Option(None, "--port", help="Shortcut for --base-url http://localhost:<port>"),
    log_file: str | None = typer.Option(None, "--log-file", "-o", help="Append-only report file"),
) -> None:
    """Connect to the event stream, classify every tick into buckets, and report anomalies."""
    settings = ctx.obj["settings"]
    apply_run_options(
        settings,
        minutes=minutes,
        bucket_minutes=bucket_minutes,
        base_url=base_url,
        port=port,
        log_file=log_file,
    )
    diag = DiagnosticRun(settings, market_id=market_id, slug=slug)

    loop = asyncio.new_event_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, diag.stop)
        loop.add_signal_handler(signal.SIGTERM, diag.stop)
    try:
        loop.run_until_complete(diag.run())
    except StreamConnectError as e:
        typer.echo(f"Fatal: {e}", err=True)
        raise typer.Exit(1)
    finally:
        loop.close()


@app.command("grid")
def grid(
    ctx: typer.Context,
    origin: str = typer.Option(..., "--origin", help="Grid origin (ISO-8601), e.g. a market windowStart"),
    bucket_minutes: float | None = typer.Option(None, "--bucket-minutes", help="Bucket width in minutes"),
) -> None:
    """Show how an origin-aligned grid relates to the wall-clock grid."""
    settings = ctx.obj["settings"]
    width_ms = bucket_width_ms(bucket_minutes if bucket_minutes is not None else settings.bucket_minutes)
    origin_ms = parse_ts_ms(origin)
    if origin_ms is None:
        typer.echo(f"Invalid origin: {origin}", err=True)
        raise typer.Exit(2)
    drift = grid_drift_ms(origin_ms, width_ms)
    wall = wall_bucket_start_ms(origin_ms, width_ms)
    typer.echo(f"Origin:            {ms_to_iso(origin_ms)} ({origin_ms})")
    typer.echo(f"Bucket width:      {width_ms // 60_000}m ({width_ms}ms)")
    typer.echo(f"Wall-clock bucket: {ms_to_iso(wall)}")
    if drift == 0:
        typer.echo("Grids: IDENTICAL (origin on a wall-clock boundary)")
        return
    typer.echo(f"Grids: DIFFER by {drift}ms")
    typer.echo(f"  wall-clock grid:     {clock(wall)}, {clock(wall + width_ms)}, {clock(wall + 2 * width_ms)} ...")
    typer.echo(
        f"  origin-aligned grid: {clock(origin_ms)}, {clock(origin_ms + width_ms)},"
        f" {clock(origin_ms + 2 * width_ms)} ..."
    )
    typer.echo(f"  ticks within the {drift}ms after a wall-clock boundary land one bucket earlier on the origin grid")
