"""Report output - timestamp-prefixed lines to the console and an append-only log file."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

import typer


def _stamp(now: float) -> str:
    return datetime.fromtimestamp(now, tz=UTC).strftime("%Y-%m-%d %H:%M:%S.%f")[:23]


class ReportWriter:
    """Writes `[YYYY-MM-DD HH:MM:SS.mmm] text` lines. console=None keeps output file-only (e.g. under the TUI)."""

    def __init__(
        self,
        log_file: str | Path | None = None,
        console: Callable[[str], None] | None = typer.echo,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.log_file = Path(log_file) if log_file else None
        self._console = console
        self._clock = clock
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def line(self, text: str = "", *, file_only: bool = False) -> None:
        formatted = f"[{_stamp(self._clock())}] {text}"
        if not file_only and self._console is not None:
            self._console(formatted)
        self._append(formatted)

    def lines(self, texts: list[str], *, file_only: bool = False) -> None:
        for text in texts:
            self.line(text, file_only=file_only)

    def raw(self, text: str) -> None:
        """Unprefixed text to the file only (run header)."""
        self._append(text)

    def _append(self, text: str) -> None:
        if self.log_file is None:
            return
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(text + "\n")
