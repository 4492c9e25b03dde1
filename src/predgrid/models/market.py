"""MarketWindow - resolved market and grid origin for a run."""

from __future__ import annotations

from pydantic import BaseModel, Field


class MarketWindow(BaseModel):
    """Canonical market id plus the window start that anchors the origin-aligned grid."""

    market_id: str | None = None
    slug: str | None = None
    window_start: str
    origin_ms: int = Field(..., description="window_start as ms epoch")
