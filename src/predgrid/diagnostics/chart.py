"""ASCII bucket chart - last N bucket prices plotted on a fixed-height grid."""

from __future__ import annotations

from predgrid.grid.buckets import clock
from predgrid.series.engine import SeriesPoint


def render_chart(points: list[SeriesPoint], width: int = 70, height: int = 15) -> list[str]:
    """Render the last `width` points, sorted by bucket start, one column per bucket."""
    if not points:
        return ["  (no data yet)"]
    visible = sorted(points, key=lambda p: p.bucket_start_ms)[-width:]
    prices = [p.price for p in visible]
    lo, hi = min(prices), max(prices)
    span = (hi - lo) or 0.001

    grid = [[" "] * len(visible) for _ in range(height)]
    for col, price in enumerate(prices):
        row = int((1 - (price - lo) / span) * (height - 1))
        grid[row][col] = "*"

    out = []
    for row in range(height):
        if row == 0:
            label = f"{hi:7.3f}"
        elif row == height - 1:
            label = f"{lo:7.3f}"
        else:
            label = " " * 7
        out.append(f"  {label} |{''.join(grid[row])}")

    first = clock(visible[0].bucket_start_ms)[:5]
    last = clock(visible[-1].bucket_start_ms)[:5]
    out.append("          +" + "-" * len(visible))
    gap = max(1, len(visible) - len(first) - len(last))
    out.append("           " + first + " " * gap + (last if len(visible) > 1 else ""))
    return out
