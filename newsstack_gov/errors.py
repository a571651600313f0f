"""Error taxonomy and retry policy for newsstack_gov.

Callers tell per-source fetch failures, persistence failures and
configuration problems apart by type.  A duplicate fingerprint is not an
exception at all: the store reports it through ``InsertResult.duplicate``.

``RetryPolicy`` is the backoff schedule used for outbound HTTP.
"""
from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class NewsstackError(Exception):
    """Base error for all newsstack_gov subsystems."""
    pass


class ConfigError(NewsstackError):
    """Invalid configuration value."""
    pass


class SchedulerConfigurationError(ConfigError):
    """Invalid trigger pattern or timezone; the scheduler must not start."""

    def __init__(self, message: str, *, trigger: str = ""):
        self.trigger = trigger
        super().__init__(message)


class SourceFetchError(NewsstackError):
    """One source adapter failed (network, timeout, parse)."""

    def __init__(self, message: str, *, source_id: str = ""):
        self.source_id = source_id
        super().__init__(message)


class PersistenceError(NewsstackError):
    """The store rejected a write for a reason other than duplication."""
    pass


class StoreUnavailableError(PersistenceError):
    """The store itself cannot be reached (locked, closed, corrupt)."""
    pass


class ConcurrentRunRejected(NewsstackError):
    """A trigger fired while a run was already in progress."""

    def __init__(self, label: str):
        self.label = label
        super().__init__(f"run '{label}' skipped: already running")


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with ±``jitter_pct`` jitter, capped at ``max_delay``.

    ``attempts`` counts the first try, so ``attempts=1`` never retries.
    """

    attempts: int = 3
    base_delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 30.0
    jitter_pct: float = 0.10

    def delays(self) -> Iterator[float]:
        """Sleep before each retry; yields ``attempts - 1`` values."""
        delay = self.base_delay
        for _ in range(max(1, self.attempts) - 1):
            jitter = delay * self.jitter_pct * (2 * random.random() - 1)
            yield max(0.0, min(delay + jitter, self.max_delay))
            delay = min(delay * self.backoff, self.max_delay)

    def call(
        self,
        fn: Callable[[], T],
        retry_on: tuple[type[BaseException], ...],
        on_retry: Callable[[int, BaseException], Any] | None = None,
        deadline: float | None = None,
    ) -> T:
        """Run *fn*; on a *retry_on* exception back off and try again.

        The last failure propagates unchanged.  Exceptions outside
        *retry_on* are never retried, and no retry is attempted when its
        backoff would end past *deadline* (a ``time.monotonic()`` value).
        """
        attempt = 1
        for pause in self.delays():
            try:
                return fn()
            except retry_on as exc:
                if deadline is not None and time.monotonic() + pause >= deadline:
                    raise
                if on_retry is not None:
                    on_retry(attempt, exc)
                logger.debug("attempt %d/%d failed, sleeping %.1fs: %s",
                             attempt, self.attempts, pause, exc)
                time.sleep(pause)
            attempt += 1
        return fn()
