"""Canonical schema (Pydantic) - ticks, stream events, persisted rows, market window."""

from predgrid.models.market import MarketWindow
from predgrid.models.tick import (
    MovementEvent,
    PersistedTick,
    StreamError,
    Tick,
    TickAction,
)

__all__ = [
    "Tick",
    "TickAction",
    "MovementEvent",
    "StreamError",
    "PersistedTick",
    "MarketWindow",
]
