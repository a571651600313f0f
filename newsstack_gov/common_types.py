"""Shared record and result types for the ingestion pipeline.

Every adapter (live, synthetic, …) returns ``CandidateRecord`` objects;
the orchestrator turns them into persisted ``NewsRecord`` rows and
reports a ``RunResult`` per pass.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .config import AgencyConfig


@dataclass(frozen=True)
class CandidateRecord:
    """One announcement as produced by a source adapter."""

    title: str
    summary: str | None = None
    url: str | None = None
    published_at: datetime | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.title and self.title.strip())


@dataclass
class NewsRecord:
    """Persisted announcement row."""

    title: str
    source_id: str  # agency code: "fsc" | "fss" | "ftc" | …
    source_name: str
    fingerprint: str
    published_at: datetime
    ingested_at: datetime
    summary: str | None = None
    url: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        for k in ("published_at", "ingested_at", "created_at", "updated_at"):
            if d[k] is not None:
                d[k] = d[k].isoformat()
        return d


@dataclass(frozen=True)
class InsertResult:
    """Outcome of ``NewsStore.insert``.

    ``duplicate=True`` means the fingerprint already existed; it is an
    expected dedup outcome, not a failure.
    """

    id: int | None
    duplicate: bool


# ── Run result ──────────────────────────────────────────────────


@dataclass
class SourceSuccess:
    source_id: str
    source: str
    new_items: int
    total: int


@dataclass
class SourceFailure:
    source_id: str
    source: str
    error: str


@dataclass
class RunSummary:
    total_new: int = 0
    total_processed: int = 0


@dataclass
class RunResult:
    """Aggregated result of one orchestrator pass.

    A run with some failed sources is still a completed run: the failed
    sources are listed in ``errors``.
    """

    success: list[SourceSuccess] = field(default_factory=list)
    errors: list[SourceFailure] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)

    def add_success(self, item: SourceSuccess) -> None:
        self.success.append(item)
        self.summary.total_new += item.new_items
        self.summary.total_processed += item.total

    def add_failure(self, item: SourceFailure) -> None:
        self.errors.append(item)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RunOutcome:
    """What the scheduler records for one ``execute_run`` call."""

    label: str
    status: str  # "completed" | "failed" | "skipped"
    started_at: datetime
    finished_at: datetime | None = None
    duration_s: float = 0.0
    result: RunResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_s": round(self.duration_s, 3),
            "result": self.result.to_dict() if self.result is not None else None,
            "error": self.error,
        }


# ── Adapter capability ──────────────────────────────────────────


class SourceAdapter(Protocol):
    """Fetch capability shared by the live and synthetic adapters."""

    name: str

    def fetch(self, agency: AgencyConfig, deadline: float | None = None) -> list[CandidateRecord]:
        """Candidates for *agency*; no new request starts after *deadline*
        (a ``time.monotonic()`` value)."""
        ...

    def close(self) -> None:
        ...
