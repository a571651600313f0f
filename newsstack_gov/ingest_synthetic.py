"""Synthetic agency adapter for environments where live fetch is disallowed.

Generates 3–5 plausible press releases per agency, published within the
last ~24 hours, from a fixed template list.  Titles carry the publication
month/day so the same template on a later day is a new record, while
repeated runs on the same day mostly hit the deduplicator.

Pass ``seed`` (and optionally ``clock``) for fully deterministic output.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import List

from .common_types import CandidateRecord
from .config import AgencyConfig
from .errors import SourceFetchError

TEMPLATES: dict[str, tuple[str, ...]] = {
    "fsc": (
        "Digital finance innovation plan announced",
        "Expanded support for low-income borrowers",
        "Regulatory improvements to promote ESG finance",
        "Measures to strengthen virtual asset market integrity",
        "Stronger financial consumer protection measures take effect",
        "SME financing programme expanded",
        "Pandemic relief lending extended",
        "Plan to strengthen capital market competitiveness",
    ),
    "fss": (
        "Tighter supervision of bank soundness",
        "Revised risk management guidelines for insurers",
        "Cybersecurity measures for financial companies",
        "Crackdown on illegal lending practices",
        "Improved redress procedures for financial consumers",
        "Card fee transparency improvements",
        "Stronger supervision of internet-only banks",
        "Results of personal data protection inspections",
    ),
    "ftc": (
        "Tighter limits on conglomerate entry into local commerce",
        "Investigation opened into online platform monopolies",
        "Sanctions on late subcontracting payments",
        "Crackdown on unfair franchise practices",
        "Inspection of mandatory closing days at large retailers",
        "Improvements to consumer class action system",
        "Fair trade guidelines for e-commerce",
        "Stronger protection for suppliers announced",
    ),
}


class SyntheticAdapter:
    """Template-based generator satisfying the adapter contract."""

    name = "synthetic"

    def __init__(
        self,
        seed: int | None = None,
        clock: Callable[[], datetime] | None = None,
        min_items: int = 3,
        max_items: int = 5,
    ) -> None:
        self._rng = random.Random(seed)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.min_items = min_items
        self.max_items = max_items

    def fetch(self, agency: AgencyConfig, deadline: float | None = None) -> List[CandidateRecord]:
        templates = TEMPLATES.get(agency.code)
        if not templates:
            raise SourceFetchError(
                f"no synthetic templates for agency {agency.code!r}",
                source_id=agency.code,
            )
        now = self._clock()
        out: List[CandidateRecord] = []
        for i in range(self._rng.randint(self.min_items, self.max_items)):
            template = self._rng.choice(templates)
            hours_ago = i * 4 + self._rng.random() * 4
            published = now - timedelta(hours=hours_ago)
            out.append(
                CandidateRecord(
                    title=f"{template} - {published.month}/{published.day}",
                    summary=(
                        f'{agency.name} published its policy direction and implementation '
                        f'plan for "{template}".'
                    ),
                    url=f"{agency.base_url}/news/{int(now.timestamp() * 1000)}-{i}",
                    published_at=published,
                )
            )
        return out

    def close(self) -> None:
        pass
