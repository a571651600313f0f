"""Adapter selection: one fetch capability, chosen by configuration."""

from __future__ import annotations

import logging

from .common_types import SourceAdapter
from .config import Config
from .errors import ConfigError

logger = logging.getLogger(__name__)


def build_adapter(cfg: Config) -> SourceAdapter:
    """Return the adapter named by ``cfg.fetch_mode``."""
    if cfg.fetch_mode == "synthetic":
        from .ingest_synthetic import SyntheticAdapter

        adapter: SourceAdapter = SyntheticAdapter()
    elif cfg.fetch_mode == "live":
        from .ingest_live import LiveAdapter

        adapter = LiveAdapter(
            timeout_s=cfg.fetch_timeout_s,
            retry_attempts=cfg.fetch_retry_attempts,
        )
    else:
        raise ConfigError(f"unknown fetch mode {cfg.fetch_mode!r}")
    logger.info("Fetch adapter: %s", adapter.name)
    return adapter
