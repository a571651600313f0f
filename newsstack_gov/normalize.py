"""Normalisation helpers: raw list-page cells → clean candidate fields.

Agency boards print dates in several shapes (``2024-01-05``,
``2024.01.05``, ``2024/1/5``, ``2024년 1월 5일``).  Parsing is tolerant:
an unparseable cell yields ``None`` and the caller decides the fallback.
Naive dates are interpreted in the agencies' local timezone.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, tzinfo
from urllib.parse import urljoin
from zoneinfo import ZoneInfo

from dateutil import parser as dtparser

logger = logging.getLogger(__name__)

DEFAULT_TZ = ZoneInfo("Asia/Seoul")

# Shortest valid format: "YYYYMMDD" = 8 chars.  Shorter strings like
# "5" or "12" are ambiguously parsed by dateutil (e.g. "5" → the 5th of
# the current month).
_MIN_DATE_LEN = 8

_KO_DATE_MARKERS = re.compile(r"\s*[년월]\s*")
_KO_DAY_MARKER = re.compile(r"\s*일\b")
_DOTTED_DATE = re.compile(r"^(\d{4})\.\s*(\d{1,2})\.\s*(\d{1,2})\.?")
_WS_RE = re.compile(r"\s+")


def clean_text(s: str | None) -> str:
    """Collapse internal whitespace and strip."""
    return _WS_RE.sub(" ", s or "").strip()


def parse_date(s: str | None, tz: tzinfo = DEFAULT_TZ) -> datetime | None:
    """Parse a board date cell to an aware datetime, or ``None``."""
    if not s:
        return None
    text = clean_text(s)
    text = _KO_DAY_MARKER.sub("", _KO_DATE_MARKERS.sub("-", text)).strip("- ")
    m = _DOTTED_DATE.match(text)
    if m:
        text = f"{m.group(1)}-{m.group(2)}-{m.group(3)}"
    if len(text) < _MIN_DATE_LEN:
        logger.warning("Date string too short (%d chars): %r", len(text), text)
        return None
    try:
        dt = dtparser.parse(text)
    except (ValueError, OverflowError):
        logger.warning("Unparseable date %r", text[:80])
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


def absolute_url(href: str | None, base_url: str) -> str | None:
    """Resolve a (possibly relative) link against the agency's base URL."""
    href = (href or "").strip()
    if not href or href.startswith(("javascript:", "#")):
        return None
    if href.startswith(("http://", "https://")):
        return href
    return urljoin(base_url.rstrip("/") + "/", href)
