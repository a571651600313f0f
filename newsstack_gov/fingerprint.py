"""Title fingerprinting and duplicate lookup.

The fingerprint is the uniqueness key of the ``news`` table: MD5 over
the trimmed, lower-cased title joined to the agency code.  Same title
under a different agency is a different record.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store_sqlite import NewsStore


def normalize_title(title: str) -> str:
    return (title or "").strip().lower()


def fingerprint(title: str, source_id: str) -> str:
    """Deterministic hex digest for ``(title, source_id)``.

    Case- and surrounding-whitespace-insensitive on the title, so
    ``fingerprint("Foo ", "fsc") == fingerprint("foo", "fsc")``.
    """
    key = f"{normalize_title(title)}_{source_id}"
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class Deduplicator:
    """Read-only duplicate check against the active records in a store."""

    def __init__(self, store: NewsStore) -> None:
        self.store = store

    fingerprint = staticmethod(fingerprint)

    def exists(self, fp: str) -> bool:
        return self.store.exists_active(fp)

    def seen(self, title: str, source_id: str) -> bool:
        return self.exists(fingerprint(title, source_id))
