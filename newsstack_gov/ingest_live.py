"""Live agency adapter: fetch the press-release list page and extract rows.

One GET per agency (with retry/backoff), then a selector-driven pass
over the board table.  Each agency's selectors live in
``config.AGENCIES``; this module owns no per-site logic beyond that.

Returns ``list[CandidateRecord]``; any network, HTTP or markup failure is
raised as ``SourceFetchError`` so the orchestrator can record it against
the one agency and move on.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

import httpx
from bs4 import BeautifulSoup

from ._http import get_with_retry, make_client, sanitize_exc
from .common_types import CandidateRecord
from .config import AgencyConfig
from .errors import SourceFetchError
from .normalize import absolute_url, clean_text, parse_date

logger = logging.getLogger(__name__)


def parse_board(html: str, agency: AgencyConfig) -> List[CandidateRecord]:
    """Extract candidates from one board page.

    Rows without a title are ignored; a row that fails to parse is logged
    and skipped rather than failing the whole page.
    """
    soup = BeautifulSoup(html, "html.parser")
    sel = agency.selectors
    out: List[CandidateRecord] = []
    for row in soup.select(sel.rows):
        try:
            title_el = row.select_one(sel.title)
            if title_el is None:
                continue
            title = clean_text(title_el.get_text())
            if not title:
                continue
            date_el = row.select_one(sel.date)
            published = parse_date(date_el.get_text()) if date_el is not None else None
            out.append(
                CandidateRecord(
                    title=title,
                    summary=f'{agency.name} announced "{title}".',
                    url=absolute_url(title_el.get("href"), agency.base_url),
                    published_at=published or datetime.now(timezone.utc),
                )
            )
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("%s: row parse error: %s", agency.code, exc)
    return out


class LiveAdapter:
    """Synchronous httpx + BeautifulSoup adapter for the agency boards."""

    name = "live"

    def __init__(
        self,
        timeout_s: float = 30.0,
        retry_attempts: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.retry_attempts = retry_attempts
        self.client = make_client(timeout_s, transport=transport)

    def fetch(self, agency: AgencyConfig, deadline: float | None = None) -> List[CandidateRecord]:
        try:
            r = get_with_retry(
                self.client, agency.news_url, attempts=self.retry_attempts, deadline=deadline,
            )
        except httpx.HTTPError as exc:
            raise SourceFetchError(
                f"{agency.name}: site unreachable: {sanitize_exc(exc)}",
                source_id=agency.code,
            ) from exc
        items = parse_board(r.text, agency)
        if not items:
            # An empty board almost always means the markup changed.
            logger.warning("%s: no rows matched %r", agency.code, agency.selectors.rows)
        logger.info("%s: %d candidate(s) fetched live", agency.code, len(items))
        return items

    def close(self) -> None:
        self.client.close()
