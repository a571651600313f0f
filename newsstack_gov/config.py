"""Global configuration for the government press-release ingester.

All tunables can be overridden via environment variables.  The agency
registry (``AGENCIES``) is static: adding a source means adding an
``AgencyConfig`` entry here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigError


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


# ── Agency registry ─────────────────────────────────────────────


@dataclass(frozen=True)
class AgencySelectors:
    """CSS selectors for one agency's press-release list page."""

    rows: str
    title: str
    date: str


@dataclass(frozen=True)
class AgencyConfig:
    """One upstream source (a government agency press-release board)."""

    code: str
    name: str
    base_url: str
    news_url: str
    selectors: AgencySelectors


AGENCIES: MappingProxyType[str, AgencyConfig] = MappingProxyType({
    "fsc": AgencyConfig(
        code="fsc",
        name="Financial Services Commission",
        base_url="https://www.fsc.go.kr",
        news_url="https://www.fsc.go.kr/no010101",
        selectors=AgencySelectors(
            rows=".board-list tbody tr",
            title="td.left a",
            date="td.date",
        ),
    ),
    "fss": AgencyConfig(
        code="fss",
        name="Financial Supervisory Service",
        base_url="https://www.fss.or.kr",
        news_url="https://www.fss.or.kr/fss/bbs/B0000188/list.do?menuNo=200218",
        selectors=AgencySelectors(
            rows=".board-list tbody tr",
            title=".left a",
            date=".date",
        ),
    ),
    "ftc": AgencyConfig(
        code="ftc",
        name="Fair Trade Commission",
        base_url="https://www.ftc.go.kr",
        news_url="https://www.ftc.go.kr/www/selectReportList.do?key=10&pageUnit=10&searchCnd=&searchKrwd=",
        selectors=AgencySelectors(
            rows=".board-list tbody tr",
            title="td.left a",
            date="td.date",
        ),
    ),
})

FETCH_MODES = ("synthetic", "live")


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per process.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── Sources ─────────────────────────────────────────────────
    # Comma-separated agency codes, processed in this order.
    sources: str = field(default_factory=lambda: os.getenv("NEWSSTACK_SOURCES", "fsc,fss,ftc"))
    fetch_mode: str = field(default_factory=lambda: os.getenv("NEWSSTACK_FETCH_MODE", "synthetic").strip().lower())
    fetch_timeout_s: float = field(default_factory=lambda: _env_float("NEWSSTACK_FETCH_TIMEOUT_S", 30.0))
    fetch_retry_attempts: int = field(default_factory=lambda: _env_int("NEWSSTACK_FETCH_RETRY_ATTEMPTS", 3))

    # Pause between two sources inside one run (upstream rate limits).
    inter_source_delay_ms: int = field(default_factory=lambda: _env_int("NEWSSTACK_INTER_SOURCE_DELAY_MS", 2000))

    # ── Scheduling ──────────────────────────────────────────────
    timezone: str = field(default_factory=lambda: os.getenv("NEWSSTACK_TZ", "Asia/Seoul"))
    # Optional override, e.g. "morning=0 9 * * 1-5;weekend=0 14 * * 6".
    # Empty means the built-in default trigger set.
    triggers: str = field(default_factory=lambda: os.getenv("NEWSSTACK_TRIGGERS", ""))
    boot_delay_s: float = field(default_factory=lambda: _env_float("NEWSSTACK_BOOT_DELAY_S", 5.0))

    # ── State ───────────────────────────────────────────────────
    sqlite_path: str = field(default_factory=lambda: os.getenv("NEWSSTACK_SQLITE_PATH", "data/government_news.db"))
    retention_days: int = field(default_factory=lambda: _env_int("NEWSSTACK_RETENTION_DAYS", 30))

    # ── Export / logging ────────────────────────────────────────
    status_path: str = field(default_factory=lambda: os.getenv("NEWSSTACK_STATUS_PATH", "data/status.json"))
    log_level: str = field(default_factory=lambda: os.getenv("NEWSSTACK_LOG_LEVEL", "INFO").upper())

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def source_codes(self) -> list[str]:
        """Configured agency codes in processing order (deduplicated)."""
        codes = [c.strip().lower() for c in self.sources.split(",") if c.strip()]
        return list(dict.fromkeys(codes))

    @property
    def agencies(self) -> list[AgencyConfig]:
        """Resolve ``source_codes`` against the registry."""
        unknown = [c for c in self.source_codes if c not in AGENCIES]
        if unknown:
            raise ConfigError(f"unknown source code(s): {', '.join(unknown)}")
        return [AGENCIES[c] for c in self.source_codes]

    @property
    def inter_source_delay_s(self) -> float:
        return max(0, self.inter_source_delay_ms) / 1000.0

    @property
    def trigger_specs(self) -> list[tuple[str, str]]:
        """Parse ``triggers`` into ``[(name, pattern), …]``; empty if unset."""
        specs: list[tuple[str, str]] = []
        for chunk in self.triggers.split(";"):
            chunk = chunk.strip()
            if not chunk:
                continue
            name, sep, pattern = chunk.partition("=")
            if not sep or not name.strip() or not pattern.strip():
                raise ConfigError(f"malformed trigger entry {chunk!r} (expected name=pattern)")
            specs.append((name.strip(), pattern.strip()))
        return specs

    def validate(self) -> None:
        """Raise ``ConfigError`` for values that cannot work at all."""
        if self.fetch_mode not in FETCH_MODES:
            raise ConfigError(
                f"NEWSSTACK_FETCH_MODE must be one of {FETCH_MODES}, got {self.fetch_mode!r}"
            )
        if not self.source_codes:
            raise ConfigError("NEWSSTACK_SOURCES is empty")
        self.agencies  # noqa: B018 – raises on unknown codes
        self.trigger_specs  # noqa: B018 – raises on malformed entries
        if self.fetch_timeout_s <= 0:
            raise ConfigError("NEWSSTACK_FETCH_TIMEOUT_S must be positive")
        if self.retention_days < 1:
            raise ConfigError("NEWSSTACK_RETENTION_DAYS must be >= 1")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"unknown timezone {self.timezone!r}") from None
