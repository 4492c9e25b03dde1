"""Cross-validation poller - page persisted ticks past a watermark and flag ones the stream never delivered."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from predgrid.ingestion.adapter import SeenTicks, seen_key
from predgrid.models import PersistedTick

log = structlog.get_logger(__name__)


class GroundTruthClient:
    """Read-only REST access (PostgREST dialect) to the persisted mid-tick table."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        table: str = "market_mid_ticks",
        market_id: str | None = None,
    ) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self.table = table
        self.market_id = market_id
        self._headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}

    def _params(self, watermark: str, limit: int) -> dict[str, Any]:
        params = {
            "select": "market_id,outcome,ts,mid",
            "ts": f"gt.{watermark}",
            "order": "ts.asc",
            "limit": limit,
        }
        if self.market_id:
            params["market_id"] = f"eq.{self.market_id}"
        return params

    async def fetch_after(self, watermark: str, limit: int = 500) -> GroundTruthPage:
        """Rows with ts > watermark, ascending. Raises httpx.HTTPError / ValueError on failure."""
        resp = await self._client.get(
            f"{self.base_url}/rest/v1/{self.table}",
            params=self._params(watermark, limit),
            headers=self._headers,
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, list):
            raise ValueError(f"unexpected ground truth response: {type(data).__name__}")
        rows = []
        for raw in data:
            try:
                rows.append(PersistedTick.model_validate(raw))
            except ValidationError as e:
                log.debug("ground_truth_row_skipped", error=str(e))
        # last ts of the raw page, so rows that fail validation still move the watermark
        last = data[-1].get("ts") if data and isinstance(data[-1], dict) else None
        if not isinstance(last, str) or not last:
            last = rows[-1].ts if rows else None
        return GroundTruthPage(rows=rows, last_ts=last)


@dataclass(frozen=True)
class GroundTruthPage:
    """Validated rows of one page plus the ts of its last raw row."""

    rows: list[PersistedTick]
    last_ts: str | None = None


@dataclass(frozen=True)
class PollResult:
    """Outcome of reconciling one page."""

    rows: int
    missed: int
    watermark: str


class CrossValidationPoller:
    """Pages persisted ticks past a watermark and records those absent from the stream's seen set.

    Fetching (network) and reconciling (state mutation) are separate steps so a
    driver can run the fetch concurrently and apply the result on its own loop.
    """

    def __init__(
        self,
        source: GroundTruthClient,
        seen: SeenTicks,
        watermark: str,
        *,
        page_size: int = 500,
        missed_limit: int = 100,
    ) -> None:
        self.source = source
        self.seen = seen
        self.watermark = watermark
        self.page_size = page_size
        self.missed_limit = missed_limit
        self.missed: list[PersistedTick] = []
        self.missed_total = 0
        self.rows_checked = 0
        self.polls = 0
        self.failures = 0
        self.last_error: str | None = None
        self._reported: set[tuple[str, int | str]] = set()

    async def fetch_page(self) -> GroundTruthPage | None:
        """Fetch the next page. None on failure (logged; watermark untouched)."""
        try:
            return await self.source.fetch_after(self.watermark, self.page_size)
        except (httpx.HTTPError, ValueError) as e:
            self.failures += 1
            self.last_error = str(e)
            log.warning("ground_truth_poll_failed", error=str(e), watermark=self.watermark)
            return None

    def reconcile(self, rows: list[PersistedTick], last_ts: str | None = None) -> PollResult:
        """Compare a fetched page with the seen set and advance the watermark to its last row.

        last_ts is the ts of the last raw row when it differs from the last valid one.
        """
        self.polls += 1
        last_ts = last_ts or (rows[-1].ts if rows else None)
        if last_ts:
            self.watermark = last_ts
        if not rows:
            return PollResult(rows=0, missed=0, watermark=self.watermark)
        self.rows_checked += len(rows)
        missed = 0
        for row in rows:
            key = seen_key(row.market_id, row.ts)
            if self.seen.has(row.market_id, row.ts) or key in self._reported:
                continue
            self._reported.add(key)
            missed += 1
            self.missed_total += 1
            if len(self.missed) < self.missed_limit:
                self.missed.append(row)
        return PollResult(rows=len(rows), missed=missed, watermark=self.watermark)

    async def poll_once(self) -> PollResult | None:
        page = await self.fetch_page()
        if page is None:
            return None
        return self.reconcile(page.rows, page.last_ts)
