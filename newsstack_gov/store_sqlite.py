"""SQLite-backed persistence: press-release records + per-day run stats.

Uses WAL mode + NORMAL synchronous for write throughput while retaining
crash safety.  One connection is shared across threads; every statement
runs under ``self._lock`` so the scheduler thread and a manual run can
never interleave a fingerprint check with a conflicting insert.

Timestamps are stored as ISO-8601 UTC strings so lexical comparison in
SQL matches chronological order.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from .common_types import InsertResult, NewsRecord
from .errors import ConfigError, PersistenceError, StoreUnavailableError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS news (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  title TEXT NOT NULL,
  summary TEXT,
  url TEXT,
  agency TEXT NOT NULL,
  agency_code TEXT NOT NULL,
  published_at TEXT NOT NULL,
  scraped_at TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  is_active INTEGER NOT NULL DEFAULT 1,
  hash TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS idx_news_agency_code ON news(agency_code);
CREATE INDEX IF NOT EXISTS idx_news_published_at ON news(published_at);
CREATE INDEX IF NOT EXISTS idx_news_scraped_at ON news(scraped_at);
CREATE INDEX IF NOT EXISTS idx_news_active ON news(is_active);

CREATE TABLE IF NOT EXISTS scraping_stats (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  date TEXT NOT NULL,
  agency_code TEXT NOT NULL,
  total_scraped INTEGER NOT NULL DEFAULT 0,
  new_items INTEGER NOT NULL DEFAULT 0,
  errors INTEGER NOT NULL DEFAULT 0,
  duration_seconds REAL NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(date, agency_code)
);
"""

_NEWS_COLUMNS = (
    "id, title, summary, url, agency, agency_code, published_at, "
    "scraped_at, created_at, updated_at, is_active, hash"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    """Normalise to an aware UTC ISO string (naive input assumed UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def _parse_iso(s: str | None) -> datetime | None:
    return datetime.fromisoformat(s) if s else None


def _row_to_record(row: tuple) -> NewsRecord:
    (rid, title, summary, url, agency, code, published, scraped,
     created, updated, active, fp) = row
    return NewsRecord(
        id=rid,
        title=title,
        summary=summary,
        url=url,
        source_name=agency,
        source_id=code,
        published_at=_parse_iso(published),
        ingested_at=_parse_iso(scraped),
        created_at=_parse_iso(created),
        updated_at=_parse_iso(updated),
        active=bool(active),
        fingerprint=fp,
    )


class NewsStore:
    """Press-release store + run statistics backed by SQLite."""

    def __init__(self, path: str, busy_timeout_ms: int = 5000) -> None:
        self.path = path
        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
            self.conn.execute("PRAGMA journal_mode=WAL;")
            self.conn.execute("PRAGMA synchronous=NORMAL;")
            self.conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)};")
            self.conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"cannot open store at {path}: {exc}") from exc
        logger.info("News store ready: %s", path)

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one statement, mapping driver errors onto the taxonomy.

        ``IntegrityError`` is re-raised untouched so callers can decide
        whether it is a duplicate or a real constraint violation.
        """
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError:
            raise
        except (sqlite3.OperationalError, sqlite3.DatabaseError, sqlite3.ProgrammingError) as exc:
            raise StoreUnavailableError(f"store unavailable: {exc}") from exc

    # ── Records ─────────────────────────────────────────────────

    def insert(self, record: NewsRecord) -> InsertResult:
        """Insert *record*; a repeated fingerprint yields ``duplicate=True``."""
        now = _iso(_utcnow())
        params = (
            record.title,
            record.summary,
            record.url,
            record.source_name,
            record.source_id,
            _iso(record.published_at),
            _iso(record.ingested_at),
            now,
            now,
            1 if record.active else 0,
            record.fingerprint,
        )
        with self._lock:
            try:
                cur = self._execute(
                    "INSERT INTO news(title, summary, url, agency, agency_code, published_at, "
                    "scraped_at, created_at, updated_at, is_active, hash) "
                    "VALUES(?,?,?,?,?,?,?,?,?,?,?)",
                    params,
                )
            except sqlite3.IntegrityError as exc:
                if "news.hash" in str(exc):
                    logger.debug("Duplicate fingerprint skipped: %s", record.fingerprint)
                    return InsertResult(id=None, duplicate=True)
                raise PersistenceError(f"rejected record {record.fingerprint}: {exc}") from exc
        logger.debug("Stored record id=%s (%s)", cur.lastrowid, record.fingerprint)
        return InsertResult(id=cur.lastrowid, duplicate=False)

    def exists_active(self, fp: str) -> bool:
        with self._lock:
            row = self._execute(
                "SELECT 1 FROM news WHERE hash=? AND is_active=1", (fp,)
            ).fetchone()
        return row is not None

    @staticmethod
    def _filter_sql(source_id: Optional[str], since: Optional[datetime]) -> tuple[str, list[Any]]:
        sql = " WHERE is_active=1"
        params: list[Any] = []
        if source_id and source_id != "all":
            sql += " AND agency_code=?"
            params.append(source_id)
        if since is not None:
            sql += " AND published_at >= ?"
            params.append(_iso(since))
        return sql, params

    def query_active(
        self,
        source_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[NewsRecord]:
        """Active records, newest first."""
        where, params = self._filter_sql(source_id, since)
        sql = f"SELECT {_NEWS_COLUMNS} FROM news{where} ORDER BY published_at DESC, created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([int(limit), max(0, int(offset))])
        with self._lock:
            rows = self._execute(sql, tuple(params)).fetchall()
        return [_row_to_record(r) for r in rows]

    def count(self, source_id: Optional[str] = None, since: Optional[datetime] = None) -> int:
        where, params = self._filter_sql(source_id, since)
        with self._lock:
            row = self._execute(f"SELECT COUNT(*) FROM news{where}", tuple(params)).fetchone()
        return int(row[0])

    # ── Run statistics ──────────────────────────────────────────

    def upsert_run_stat(
        self,
        day: date,
        source_id: str,
        total: int,
        new_items: int,
        errors: int,
        duration_s: float,
    ) -> None:
        """Accumulate one source's run counters into its ``(day, source)`` row."""
        now = _iso(_utcnow())
        with self._lock:
            self._execute(
                "INSERT INTO scraping_stats(date, agency_code, total_scraped, new_items, errors, "
                "duration_seconds, created_at, updated_at) VALUES(?,?,?,?,?,?,?,?) "
                "ON CONFLICT(date, agency_code) DO UPDATE SET "
                "total_scraped=total_scraped+excluded.total_scraped, "
                "new_items=new_items+excluded.new_items, "
                "errors=errors+excluded.errors, "
                "duration_seconds=duration_seconds+excluded.duration_seconds, "
                "updated_at=excluded.updated_at",
                (day.isoformat(), source_id, int(total), int(new_items), int(errors),
                 float(duration_s), now, now),
            )

    def run_stats(self, day: Optional[date] = None) -> list[dict[str, Any]]:
        sql = (
            "SELECT date, agency_code, total_scraped, new_items, errors, duration_seconds "
            "FROM scraping_stats"
        )
        params: tuple = ()
        if day is not None:
            sql += " WHERE date=?"
            params = (day.isoformat(),)
        sql += " ORDER BY date DESC, agency_code"
        with self._lock:
            rows = self._execute(sql, params).fetchall()
        return [
            {
                "date": r[0],
                "source_id": r[1],
                "total": r[2],
                "new_items": r[3],
                "errors": r[4],
                "duration_s": r[5],
            }
            for r in rows
        ]

    def stats(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Aggregate counts over active records (total / today / week / per source)."""
        now = now or _utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = day_start - timedelta(days=7)
        with self._lock:
            total = self._execute("SELECT COUNT(*) FROM news WHERE is_active=1").fetchone()[0]
            today = self._execute(
                "SELECT COUNT(*) FROM news WHERE is_active=1 AND scraped_at >= ?",
                (_iso(day_start),),
            ).fetchone()[0]
            this_week = self._execute(
                "SELECT COUNT(*) FROM news WHERE is_active=1 AND scraped_at >= ?",
                (_iso(week_start),),
            ).fetchone()[0]
            by_source = self._execute(
                "SELECT agency_code, agency, COUNT(*) FROM news WHERE is_active=1 "
                "GROUP BY agency_code, agency ORDER BY COUNT(*) DESC, agency_code"
            ).fetchall()
        return {
            "total": total,
            "today": today,
            "this_week": this_week,
            "by_source": [
                {"source_id": code, "source": name, "count": n} for code, name, n in by_source
            ],
        }

    # ── Maintenance ─────────────────────────────────────────────

    def deactivate_older_than(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Soft-delete active records published more than *retention_days* ago.

        Returns the number of rows flipped to inactive; a second call with
        the same arguments returns 0.  A window under one day is refused
        with ``ConfigError``: it would expire records ingested moments ago.
        """
        if retention_days < 1:
            raise ConfigError(f"retention window must be >= 1 day, got {retention_days}")
        now = now or _utcnow()
        cutoff = now - timedelta(days=retention_days)
        with self._lock:
            cur = self._execute(
                "UPDATE news SET is_active=0, updated_at=? WHERE is_active=1 AND published_at < ?",
                (_iso(now), _iso(cutoff)),
            )
        changed = cur.rowcount
        logger.info("Retention: %d record(s) older than %d days deactivated.", changed, retention_days)
        return changed

    def close(self) -> None:
        with self._lock:
            self.conn.close()
