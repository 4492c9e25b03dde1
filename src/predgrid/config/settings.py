"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir() -> Path:
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    config_dir = config_dir or _find_config_dir()
    default_path = config_dir / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = config_dir / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        stream: dict[str, Any] | None = None,
        report: dict[str, Any] | None = None,
        ground_truth: dict[str, Any] | None = None,
        series: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.stream = stream or {}
        self.report = report or {}
        self.ground_truth = ground_truth or {}
        self.series = series or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            stream=raw.get("stream"),
            report=raw.get("report"),
            ground_truth=raw.get("ground_truth"),
            series=raw.get("series"),
            logging=raw.get("logging"),
        )

    def override(self, section: str, **values: Any) -> None:
        """Apply per-run overrides (CLI options); None values are ignored."""
        target = getattr(self, section)
        for key, value in values.items():
            if value is not None:
                target[key] = value

    # Convenience accessors with defaults
    @property
    def base_url(self) -> str:
        return str(self.stream.get("base_url", "http://localhost:3005")).rstrip("/")

    @property
    def bucket_minutes(self) -> float:
        return float(self.stream.get("bucket_minutes", 1))

    @property
    def duration_sec(self) -> float:
        return float(self.stream.get("duration_minutes", 20)) * 60.0

    @property
    def connect_timeout_sec(self) -> float:
        return float(self.stream.get("connect_timeout_sec", 10.0))

    @property
    def summary_interval_sec(self) -> float:
        return float(self.report.get("summary_interval_sec", 30.0))

    @property
    def log_file(self) -> str:
        return self.report.get("log_file", "logs/stream-diag.log")

    @property
    def flat_threshold(self) -> float:
        return float(self.report.get("flat_threshold", 1e-4))

    @property
    def flat_run_alert(self) -> int:
        return int(self.report.get("flat_run_alert", 5))

    @property
    def mid_hit_sample(self) -> int:
        return int(self.report.get("mid_hit_sample", 20))

    @property
    def drop_sample(self) -> int:
        return int(self.report.get("drop_sample", 10))

    @property
    def missed_sample(self) -> int:
        return int(self.report.get("missed_sample", 20))

    @property
    def notable_limit(self) -> int:
        return int(self.report.get("notable_limit", 5000))

    @property
    def ground_truth_url(self) -> str:
        return (self.ground_truth.get("url") or os.environ.get("SUPABASE_URL") or "").rstrip("/")

    @property
    def ground_truth_key(self) -> str:
        return self.ground_truth.get("key") or os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or ""

    @property
    def ground_truth_table(self) -> str:
        return self.ground_truth.get("table", "market_mid_ticks")

    @property
    def poll_interval_sec(self) -> float:
        return float(self.ground_truth.get("poll_interval_sec", 30.0))

    @property
    def page_size(self) -> int:
        return int(self.ground_truth.get("page_size", 500))

    @property
    def lookback_sec(self) -> float:
        return float(self.ground_truth.get("lookback_sec", 120.0))

    @property
    def missed_limit(self) -> int:
        return int(self.ground_truth.get("missed_limit", 100))

    @property
    def idle_evict_sec(self) -> float:
        return float(self.series.get("idle_evict_sec", 0))

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
