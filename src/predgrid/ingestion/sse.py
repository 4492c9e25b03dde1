"""Server-sent event stream - incremental frame decoder and httpx transport."""

from __future__ import annotations

import codecs
import json
from typing import Any

import httpx
import structlog

log = structlog.get_logger(__name__)


class StreamConnectError(RuntimeError):
    """Connection refused or non-2xx response on the stream handshake. Fatal to a run."""


def _parse_data(raw: str) -> Any | None:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


class SSEDecoder:
    """Turns arbitrarily split byte chunks into (event_name, payload) pairs.

    Only complete lines are parsed; the trailing partial line is buffered until
    the next chunk. An `event:` line arms the next `data:` line. Data without an
    armed event, comments (`: keep-alive`) and undecodable JSON are skipped.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""
        self._event = ""

    def feed(self, chunk: bytes) -> list[tuple[str, Any]]:
        self._partial += self._utf8.decode(chunk)
        *lines, self._partial = self._partial.split("\n")
        out: list[tuple[str, Any]] = []
        for line in lines:
            line = line.strip()
            if line:
                self._process_line(line, out)
        return out

    def _process_line(self, line: str, out: list[tuple[str, Any]]) -> None:
        if line.startswith("event:"):
            self._event = line[len("event:"):].strip()
        elif line.startswith("data:") and self._event:
            name, self._event = self._event, ""
            payload = _parse_data(line[len("data:"):].strip())
            if payload is not None:
                out.append((name, payload))

    @property
    def pending(self) -> str:
        """Buffered partial line (not yet terminated by a newline)."""
        return self._partial


async def connect_event_stream(
    client: httpx.AsyncClient,
    url: str,
    params: dict[str, Any] | None = None,
    timeout: httpx.Timeout | None = None,
) -> httpx.Response:
    """
    Open a streaming GET with Accept: text/event-stream and return the response.
    Caller reads response.aiter_bytes() and must aclose() it. No reconnect.
    """
    request = client.build_request(
        "GET",
        url,
        params=params,
        headers={"Accept": "text/event-stream"},
        timeout=timeout or httpx.Timeout(10.0, read=None),
    )
    try:
        resp = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        raise StreamConnectError(f"stream connect failed: {e}") from e
    if not resp.is_success:
        await resp.aclose()
        raise StreamConnectError(
            f"stream connect failed: {resp.status_code} {resp.reason_phrase}"
        )
    log.info("stream_connected", url=str(resp.url))
    return resp
