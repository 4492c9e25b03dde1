"""Watch command - live TUI dashboard."""

import typer

from predgrid.cli.diag import apply_run_options
from predgrid.tui.app import run_tui

app = typer.Typer(help="Launch live TUI dashboard")


@app.callback(invoke_without_command=True)
def watch(
    ctx: typer.Context,
    slug: str | None = typer.Option(None, "--slug", "-s", help="Market slug"),
    market_id: str | None = typer.Option(None, "--market-id", "-m", help="Market ID"),
    minutes: float | None = typer.Option(None, "--minutes", help="Run duration (overrides config)"),
    bucket_minutes: float | None = typer.Option(None, "--bucket-minutes", help="Bucket width in minutes"),
    base_url: str | None = typer.Option(None, "--base-url", help="Stream server base URL"),
    port: int | None = typer.Option(None, "--port", help="Shortcut for --base-url http://localhost:<port>"),
) -> None:
    """Launch the Textual dashboard (series table + bucket chart) over a diagnostic run."""
    if ctx.invoked_subcommand is not None:
        return
    settings = ctx.obj["settings"]
    apply_run_options(settings, minutes=minutes, bucket_minutes=bucket_minutes, base_url=base_url, port=port)
    run_tui(settings, market_id=market_id, slug=slug)
