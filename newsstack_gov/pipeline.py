"""Ingestion pass: agencies → adapter fetch → fingerprint dedup → store.

Agencies are processed **sequentially** in their configured order with a
fixed pause between them, so no upstream board ever sees parallel
requests from us and result aggregation needs no locking.

A failing agency never aborts the pass: its error is recorded in
``RunResult.errors`` and the next agency is attempted.  Only an
unreachable store (``StoreUnavailableError``) ends a pass early.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from ._http import sanitize_exc
from .common_types import (
    CandidateRecord,
    NewsRecord,
    RunResult,
    SourceAdapter,
    SourceFailure,
    SourceSuccess,
)
from .config import AgencyConfig
from .errors import PersistenceError, SourceFetchError, StoreUnavailableError
from .fingerprint import Deduplicator, fingerprint
from .normalize import clean_text
from .store_sqlite import NewsStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionOrchestrator:
    """Runs one full pass over all configured agencies.

    Parameters
    ----------
    store : NewsStore
        Persistence collaborator.
    adapter : SourceAdapter
        Live or synthetic fetch capability.
    agencies : sequence of AgencyConfig
        Processing order is the sequence order.
    inter_source_delay_s : float
        Pause after each agency except the last.
    fetch_timeout_s : float
        Upper bound on one ``adapter.fetch`` call; exceeded → per-agency error.
    sleep, clock :
        Injectable for tests.
    stats_tz : tzinfo
        Calendar used to bucket run statistics by date.
    """

    def __init__(
        self,
        store: NewsStore,
        adapter: SourceAdapter,
        agencies: Sequence[AgencyConfig],
        inter_source_delay_s: float = 2.0,
        fetch_timeout_s: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
        stats_tz: tzinfo = ZoneInfo("Asia/Seoul"),
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.agencies = list(agencies)
        self.inter_source_delay_s = inter_source_delay_s
        self.fetch_timeout_s = fetch_timeout_s
        self.dedup = Deduplicator(store)
        self._sleep = sleep
        self._clock = clock
        self._stats_tz = stats_tz

    # ── Fetch ───────────────────────────────────────────────────

    def _fetch(self, agency: AgencyConfig) -> list[CandidateRecord]:
        """Call the adapter under a hard timeout.

        The adapter receives the monotonic ``deadline`` and must stop
        issuing requests once it has passed.  The call runs on a daemon
        thread so a fetch that ignores the deadline can neither hold up
        the next agency nor keep the process alive at exit.
        """
        deadline = time.monotonic() + self.fetch_timeout_s
        box: dict[str, Any] = {}

        def _target() -> None:
            try:
                box["items"] = list(self.adapter.fetch(agency, deadline=deadline))
            except Exception as exc:
                box["error"] = exc

        worker = threading.Thread(target=_target, name=f"fetch-{agency.code}", daemon=True)
        worker.start()
        worker.join(self.fetch_timeout_s)
        if worker.is_alive():
            raise SourceFetchError(
                f"fetch timed out after {self.fetch_timeout_s:.1f}s",
                source_id=agency.code,
            )
        if "error" in box:
            raise box["error"]
        return box["items"]

    # ── Per-agency processing ───────────────────────────────────

    def process_candidates(
        self,
        agency: AgencyConfig,
        candidates: Sequence[CandidateRecord],
    ) -> int:
        """Dedup + persist *candidates* for one agency; return new-item count."""
        new_items = 0
        ingested_at = self._clock()
        for cand in candidates:
            if not cand.is_valid:
                continue
            # Hash the title as published; cleanup only affects the stored text.
            fp = fingerprint(cand.title, agency.code)
            title = clean_text(cand.title)
            if self.dedup.exists(fp):
                continue
            record = NewsRecord(
                title=title,
                summary=cand.summary,
                url=cand.url,
                source_id=agency.code,
                source_name=agency.name,
                fingerprint=fp,
                published_at=cand.published_at or ingested_at,
                ingested_at=ingested_at,
            )
            try:
                res = self.store.insert(record)
            except StoreUnavailableError:
                raise
            except PersistenceError as exc:
                logger.warning("%s: skipping bad record: %s", agency.code, exc)
                continue
            if res.duplicate:
                # Lost a race against a concurrent writer: same as a skip.
                continue
            new_items += 1
        return new_items

    def _record_stat(self, agency: AgencyConfig, total: int, new_items: int,
                     errors: int, duration_s: float) -> None:
        day = self._clock().astimezone(self._stats_tz).date()
        self.store.upsert_run_stat(day, agency.code, total, new_items, errors, duration_s)

    # ── Full pass ───────────────────────────────────────────────

    def run_once(self) -> RunResult:
        """Attempt every agency once, in order; return the aggregate."""
        result = RunResult()
        logger.info("Ingestion pass started (%d sources, adapter=%s)",
                    len(self.agencies), self.adapter.name)

        for idx, agency in enumerate(self.agencies):
            t0 = time.monotonic()
            try:
                candidates = self._fetch(agency)
            except Exception as exc:
                msg = sanitize_exc(exc)
                logger.error("%s fetch failed: %s", agency.name, msg)
                result.add_failure(SourceFailure(agency.code, agency.name, msg))
                self._record_stat(agency, 0, 0, 1, time.monotonic() - t0)
            else:
                new_items = self.process_candidates(agency, candidates)
                logger.info("%s: %d new of %d", agency.name, new_items, len(candidates))
                result.add_success(SourceSuccess(agency.code, agency.name, new_items, len(candidates)))
                self._record_stat(agency, len(candidates), new_items, 0, time.monotonic() - t0)

            if idx < len(self.agencies) - 1 and self.inter_source_delay_s > 0:
                self._sleep(self.inter_source_delay_s)

        logger.info(
            "Ingestion pass finished: new=%d processed=%d failed_sources=%d",
            result.summary.total_new, result.summary.total_processed, len(result.errors),
        )
        return result

    def close(self) -> None:
        self.adapter.close()


def run_retention(store: NewsStore, retention_days: int) -> int:
    """Maintenance: soft-delete records older than the retention window."""
    return store.deactivate_older_than(retention_days)
