"""Wall-clock trigger scheduler with a single-flight run guard.

Triggers are declarative (``Trigger``: cron-style ``"MIN HOUR * * DOW"``
plus a timezone).  One daemon thread computes the next fire instant
across all triggers, waits on an interruptible ``threading.Event`` and
dispatches ``execute_run(trigger.name)``.  A one-off boot run fires
``boot_delay_s`` after the first ``start()``.

Usage::

    sched = Scheduler.from_config(cfg, orchestrator)
    sched.start()
    ...
    sched.run_now()          # manual run, same single-flight guard
    sched.get_status()
    sched.stop()

Only two pieces of state are shared across threads: the run flag and the
trigger tuple.  Both live in ``RunState`` and are only touched under
``self._lock``; the trigger tuple is swapped as a whole, never mutated.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .common_types import RunOutcome
from .errors import ConcurrentRunRejected, SchedulerConfigurationError

logger = logging.getLogger(__name__)

# Longest single wait; the loop re-evaluates at least this often so a
# wall-clock jump cannot strand it.
_MAX_WAIT_S = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Trigger:
    """A fixed time-of-day on a set of weekdays, in one timezone.

    ``weekdays`` uses ``date.weekday()`` numbering (Mon=0 … Sun=6).
    """

    name: str
    pattern: str
    minute: int
    hour: int
    weekdays: frozenset[int]
    tz: str

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.tz)

    def fires_on(self, d: date) -> bool:
        return d.weekday() in self.weekdays

    def next_after(self, now: datetime) -> datetime | None:
        """First fire instant strictly after *now* (aware, in ``tz``)."""
        zone = self.zone
        local = now.astimezone(zone)
        for offset in range(8):
            d = local.date() + timedelta(days=offset)
            if not self.fires_on(d):
                continue
            candidate = datetime(d.year, d.month, d.day, self.hour, self.minute, tzinfo=zone)
            if candidate > local:
                return candidate
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "pattern": self.pattern, "timezone": self.tz}


def _parse_int(field_name: str, raw: str, lo: int, hi: int, spec: str) -> int:
    try:
        v = int(raw)
    except ValueError:
        raise SchedulerConfigurationError(
            f"{field_name} {raw!r} is not a number in {spec!r}", trigger=spec
        ) from None
    if not lo <= v <= hi:
        raise SchedulerConfigurationError(
            f"{field_name} {v} outside {lo}-{hi} in {spec!r}", trigger=spec
        )
    return v


def _parse_weekdays(raw: str, spec: str) -> frozenset[int]:
    """Cron day-of-week field → ``date.weekday()`` numbers.

    Cron counts Sun=0 (or 7), Mon=1 … Sat=6.
    """
    if raw == "*":
        return frozenset(range(7))
    cron_days: set[int] = set()
    for part in raw.split(","):
        lo_s, sep, hi_s = part.partition("-")
        lo = _parse_int("day-of-week", lo_s, 0, 7, spec)
        hi = _parse_int("day-of-week", hi_s, 0, 7, spec) if sep else lo
        if hi < lo:
            raise SchedulerConfigurationError(
                f"day-of-week range {part!r} is reversed in {spec!r}", trigger=spec
            )
        cron_days.update(range(lo, hi + 1))
    return frozenset((c - 1) % 7 for c in cron_days)


def parse_trigger(name: str, pattern: str, tz: str) -> Trigger:
    """Validate and parse ``"MIN HOUR * * DOW"``.

    Day-of-month and month must be ``*``: triggers are weekly.
    """
    spec = f"{name}={pattern}"
    fields = pattern.split()
    if len(fields) != 5:
        raise SchedulerConfigurationError(
            f"expected 5 fields (min hour dom month dow), got {len(fields)} in {spec!r}",
            trigger=spec,
        )
    minute_s, hour_s, dom, month, dow = fields
    if dom != "*" or month != "*":
        raise SchedulerConfigurationError(
            f"day-of-month and month must be '*' in {spec!r}", trigger=spec
        )
    minute = _parse_int("minute", minute_s, 0, 59, spec)
    hour = _parse_int("hour", hour_s, 0, 23, spec)
    weekdays = _parse_weekdays(dow, spec)
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise SchedulerConfigurationError(f"unknown timezone {tz!r}", trigger=spec) from exc
    return Trigger(name=name, pattern=pattern, minute=minute, hour=hour,
                   weekdays=weekdays, tz=tz)


DEFAULT_TRIGGER_SPECS: tuple[tuple[str, str], ...] = (
    ("weekday-09:00", "0 9 * * 1-5"),
    ("weekday-13:00", "0 13 * * 1-5"),
    ("weekday-17:00", "0 17 * * 1-5"),
    ("weekend", "0 14 * * 6"),
)


def build_triggers(specs: Iterable[tuple[str, str]], tz: str) -> tuple[Trigger, ...]:
    """Parse every spec or raise; never returns a partial set."""
    triggers = tuple(parse_trigger(name, pattern, tz) for name, pattern in specs)
    names = [t.name for t in triggers]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise SchedulerConfigurationError(f"duplicate trigger name(s): {', '.join(dupes)}")
    return triggers


def default_triggers(tz: str = "Asia/Seoul") -> tuple[Trigger, ...]:
    return build_triggers(DEFAULT_TRIGGER_SPECS, tz)


def next_fire_time(
    triggers: Sequence[Trigger],
    now: datetime,
) -> tuple[datetime, Trigger] | None:
    """Earliest ``(instant, trigger)`` strictly after *now*, or ``None``."""
    best: tuple[datetime, Trigger] | None = None
    for trig in triggers:
        at = trig.next_after(now)
        if at is not None and (best is None or at < best[0]):
            best = (at, trig)
    return best


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

@dataclass
class RunState:
    """Mutable scheduler state; guarded by ``Scheduler._lock``."""

    is_running: bool = False
    current_label: str | None = None
    triggers: tuple[Trigger, ...] = ()
    last_outcome: RunOutcome | None = None
    boot_due_at: datetime | None = None
    runs_executed: int = 0
    runs_skipped: int = 0


class Scheduler:
    """Fires the orchestrator on triggers; at most one run at a time.

    Parameters
    ----------
    orchestrator :
        Anything with ``run_once() -> RunResult``.
    triggers : sequence of Trigger
        Initial trigger set (validated again on ``start``).
    boot_delay_s : float or None
        Delay before the one-off boot run; ``None`` disables it.
    on_outcome : callable, optional
        ``on_outcome(outcome, status)`` after every executed run.
    clock :
        Injectable for tests.
    """

    def __init__(
        self,
        orchestrator: Any,
        triggers: Sequence[Trigger] = (),
        boot_delay_s: float | None = 5.0,
        on_outcome: Callable[[RunOutcome, dict[str, Any]], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._orchestrator = orchestrator
        self._initial_triggers = tuple(triggers)
        self._boot_delay_s = boot_delay_s
        self._boot_armed = False
        self._on_outcome = on_outcome
        self._clock = clock

        self._lock = threading.Lock()
        self._state = RunState()
        self._wake = threading.Event()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cursor: datetime | None = None

    @classmethod
    def from_config(cls, cfg: Any, orchestrator: Any, **kwargs: Any) -> "Scheduler":
        specs = cfg.trigger_specs or DEFAULT_TRIGGER_SPECS
        return cls(
            orchestrator,
            triggers=build_triggers(specs, cfg.timezone),
            boot_delay_s=cfg.boot_delay_s,
            **kwargs,
        )

    # ── Lifecycle ───────────────────────────────────────────

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state.is_running

    @staticmethod
    def _validate(triggers: Sequence[Trigger]) -> tuple[Trigger, ...]:
        for t in triggers:
            if not isinstance(t, Trigger):
                raise SchedulerConfigurationError(f"not a Trigger: {t!r}")
        # Re-parse so a hand-built Trigger gets the same validation.
        checked = tuple(parse_trigger(t.name, t.pattern, t.tz) for t in triggers)
        names = [t.name for t in checked]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise SchedulerConfigurationError(f"duplicate trigger name(s): {', '.join(dupes)}")
        return checked

    def install(self, triggers: Sequence[Trigger] | None = None) -> tuple[Trigger, ...]:
        """Validate and swap in a trigger set without starting the loop.

        Raises ``SchedulerConfigurationError`` before touching any state if
        a trigger is invalid.
        """
        new_set = self._validate(self._initial_triggers if triggers is None else triggers)
        with self._lock:
            self._state.triggers = new_set
            self._cursor = self._clock()
        logger.info("Scheduler triggers installed (%d):", len(new_set))
        for t in new_set:
            logger.info("  - %s: %s (%s)", t.name, t.pattern, t.tz)
        return new_set

    def start(self, triggers: Sequence[Trigger] | None = None) -> None:
        """Install the trigger set and start the timer thread.

        Calling ``start`` on a live scheduler swaps the trigger set (same
        as ``restart``).  The boot run is armed on the first start only.
        A loop that was told to stop (even if still finishing a run) is
        never reused: a fresh thread with its own stop event replaces it.
        """
        self.install(triggers)
        with self._lock:
            if not self._boot_armed and self._boot_delay_s is not None:
                self._state.boot_due_at = self._clock() + timedelta(seconds=max(0.0, self._boot_delay_s))
                self._boot_armed = True

            thread = self._thread
            if thread is not None and thread.is_alive() and not self._stop_event.is_set():
                self._wake.set()
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="newsstack-scheduler",
                daemon=True,
            )
            self._thread.start()

    def restart(self, triggers: Sequence[Trigger] | None = None) -> None:
        """Replace the whole trigger set atomically (no old/new overlap)."""
        self.start(triggers)

    def stop(self, join_timeout: float | None = 5.0) -> None:
        """Drop all pending triggers and stop the timer thread.

        A run already in progress is not cancelled; it completes on its
        own and clears the running flag as usual.
        """
        with self._lock:
            removed = len(self._state.triggers)
            self._state.triggers = ()
            self._state.boot_due_at = None
            self._stop_event.set()
            thread = self._thread
        self._wake.set()
        if thread is not None and thread is not threading.current_thread() and join_timeout:
            thread.join(timeout=join_timeout)
        logger.info("Scheduler stopped (%d trigger(s) removed)", removed)

    # ── Run execution ───────────────────────────────────────

    def execute_run(self, label: str) -> RunOutcome:
        """Run the orchestrator once unless a run is already in flight."""
        started = self._clock()
        with self._lock:
            if self._state.is_running:
                self._state.runs_skipped += 1
                busy_with = self._state.current_label
                rejected = ConcurrentRunRejected(label)
            else:
                self._state.is_running = True
                self._state.current_label = label
                rejected = None
        if rejected is not None:
            logger.warning("Run '%s' skipped, already running ('%s')", label, busy_with)
            return RunOutcome(label=label, status="skipped", started_at=started,
                              finished_at=started, error=str(rejected))

        logger.info("Run '%s' started", label)
        t0 = time.monotonic()
        outcome: RunOutcome | None = None
        try:
            result = self._orchestrator.run_once()
            duration = time.monotonic() - t0
            outcome = RunOutcome(label=label, status="completed", started_at=started,
                                 finished_at=self._clock(), duration_s=duration, result=result)
            logger.info(
                "Run '%s' completed in %.1fs: new=%d processed=%d",
                label, duration, result.summary.total_new, result.summary.total_processed,
            )
            if result.errors:
                logger.warning("Run '%s': %d source(s) failed", label, len(result.errors))
                for err in result.errors:
                    logger.warning("  - %s: %s", err.source, err.error)
        except Exception as exc:
            logger.exception("Run '%s' failed", label)
            outcome = RunOutcome(label=label, status="failed", started_at=started,
                                 finished_at=self._clock(),
                                 duration_s=time.monotonic() - t0, error=str(exc))
        finally:
            with self._lock:
                self._state.is_running = False
                self._state.current_label = None
                if outcome is not None:
                    self._state.last_outcome = outcome
                    self._state.runs_executed += 1

        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome, self.get_status())
            except Exception:
                logger.exception("on_outcome hook failed for run '%s'", label)
        return outcome

    def run_now(self) -> RunOutcome:
        """Manual trigger, subject to the same single-flight guard."""
        return self.execute_run("manual")

    # ── Status ──────────────────────────────────────────────

    def next_trigger(self, now: datetime | None = None) -> tuple[datetime, Trigger] | None:
        with self._lock:
            triggers = self._state.triggers
        return next_fire_time(triggers, now or self._clock())

    def get_status(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or self._clock()
        with self._lock:
            triggers = self._state.triggers
            is_running = self._state.is_running
            last = self._state.last_outcome
            boot_due_at = self._state.boot_due_at
            skipped = self._state.runs_skipped
        nxt = next_fire_time(triggers, now)
        return {
            "is_running": is_running,
            "active_trigger_count": len(triggers),
            "next_trigger_time": nxt[0].isoformat() if nxt else None,
            "next_trigger_name": nxt[1].name if nxt else None,
            "triggers": [t.to_dict() for t in triggers],
            "boot_run_pending": boot_due_at is not None,
            "runs_skipped": skipped,
            "last_outcome": last.to_dict() if last is not None else None,
        }

    # ── Timer loop ──────────────────────────────────────────

    def _due(self, now: datetime) -> tuple[str | None, float]:
        """Return ``(label_to_fire_or_None, seconds_to_wait)``."""
        with self._lock:
            triggers = self._state.triggers
            boot_at = self._state.boot_due_at
            cursor = self._cursor or now
        if boot_at is not None and now >= boot_at:
            with self._lock:
                self._state.boot_due_at = None
            return "boot", 0.0
        nxt = next_fire_time(triggers, cursor)
        if nxt is not None and now >= nxt[0]:
            with self._lock:
                self._cursor = nxt[0]
            return nxt[1].name, 0.0
        waits = [_MAX_WAIT_S]
        if boot_at is not None:
            waits.append((boot_at - now).total_seconds())
        if nxt is not None:
            waits.append((nxt[0] - now).total_seconds())
        return None, max(0.0, min(waits))

    def _run_loop(self, stop: threading.Event) -> None:
        logger.info("Scheduler loop entered")
        while not stop.is_set():
            label, wait_s = self._due(self._clock())
            if label is None:
                self._wake.wait(timeout=wait_s)
                self._wake.clear()
                continue
            self.execute_run(label)
            # Instants that passed while the run was busy are coalesced.
            with self._lock:
                self._cursor = max(self._cursor or self._clock(), self._clock())
        logger.info("Scheduler loop exited")
