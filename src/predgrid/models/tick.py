"""Tick, stream events and persisted tick rows - canonical entities."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class TickAction(str, Enum):
    """Classification of one tick against a bucket series."""

    PUSH = "PUSH"
    UPDATE_TAIL = "UPDATE_TAIL"
    MID_HIT = "MID_HIT"
    DROP = "DROP"


class Tick(BaseModel):
    """Mid-price observation delivered by the stream (`tick` event)."""

    model_config = ConfigDict(frozen=True)

    market_id: str
    outcome: str | None = None
    ts: str
    mid: float | None = None


class MovementEvent(BaseModel):
    """Detected price movement window (`movement` event)."""

    market_id: str
    outcome: str | None = None
    window_type: str
    window_start: str
    window_end: str


class StreamError(BaseModel):
    """Server-side error pushed on the stream (`error` event)."""

    message: str


class PersistedTick(BaseModel):
    """Row of the persisted mid-tick table (ground truth)."""

    market_id: str
    outcome: str | None = None
    ts: str
    mid: float | None = None
