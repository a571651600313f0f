"""newsstack_gov – scheduled ingestion of government press releases.

Polls a fixed set of agency sources (FSC, FSS, FTC) on wall-clock
triggers, deduplicates by title fingerprint, persists records in SQLite
and reports per-run results and scheduler status.

Run standalone via ``python -m newsstack_gov.run serve`` or trigger a
single pass with ``IngestionOrchestrator.run_once()``.
"""
