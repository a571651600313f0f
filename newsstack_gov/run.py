"""Entry point: ``python -m newsstack_gov.run <command>``

Commands:
    serve     start the trigger scheduler (plus boot run) and block
    once      run a single ingestion pass and print the result
    cleanup   soft-delete records older than the retention window
    stats     print store statistics as JSON
    status    print the trigger set and the next fire time

Environment variables (see ``config.Config``) control sources, adapter
mode, timezone, delays and paths; a ``.env`` next to the working
directory is loaded first without overriding the real environment.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from .adapters import build_adapter
from .common_types import RunOutcome
from .config import Config
from .errors import ConfigError, NewsstackError
from .pipeline import IngestionOrchestrator, run_retention
from .scheduler import DEFAULT_TRIGGER_SPECS, Scheduler, build_triggers
from .status_export import export_status
from .store_sqlite import NewsStore

logger = logging.getLogger(__name__)


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {raw!r}") from None
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return value


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="newsstack_gov",
        description="Scheduled ingestion of government press releases.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the scheduler until interrupted")
    sub.add_parser("once", help="Run one ingestion pass")
    p_clean = sub.add_parser("cleanup", help="Deactivate records past retention")
    p_clean.add_argument("--days", type=_positive_int, default=None,
                         help="Retention window in days (default: NEWSSTACK_RETENTION_DAYS)")
    sub.add_parser("stats", help="Print store statistics")
    sub.add_parser("status", help="Print trigger set and next fire time")
    return parser.parse_args(argv)


def _open_store(cfg: Config) -> NewsStore:
    if cfg.sqlite_path != ":memory:":
        os.makedirs(os.path.dirname(cfg.sqlite_path) or ".", exist_ok=True)
    return NewsStore(cfg.sqlite_path)


def build_orchestrator(cfg: Config, store: NewsStore) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        store=store,
        adapter=build_adapter(cfg),
        agencies=cfg.agencies,
        inter_source_delay_s=cfg.inter_source_delay_s,
        fetch_timeout_s=cfg.fetch_timeout_s,
        stats_tz=ZoneInfo(cfg.timezone),
    )


def _cmd_once(cfg: Config) -> int:
    store = _open_store(cfg)
    try:
        orch = build_orchestrator(cfg, store)
        try:
            result = orch.run_once()
        finally:
            orch.close()
    finally:
        store.close()
    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    # Partial failure is still a successful run; only total failure is not.
    return 1 if result.errors and not result.success else 0


def _cmd_serve(cfg: Config) -> int:
    # Trigger errors surface before any resource is opened.
    triggers = build_triggers(cfg.trigger_specs or DEFAULT_TRIGGER_SPECS, cfg.timezone)
    store = _open_store(cfg)
    orch: IngestionOrchestrator | None = None
    sched: Scheduler | None = None

    def _export(outcome: RunOutcome, status: dict) -> None:
        export_status(cfg.status_path, status, outcome)

    try:
        orch = build_orchestrator(cfg, store)
        sched = Scheduler(orch, triggers, boot_delay_s=cfg.boot_delay_s, on_outcome=_export)
        sched.start()
        status = sched.get_status()
        logger.info("Next trigger: %s (%s)", status["next_trigger_time"], status["next_trigger_name"])
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down.")
    finally:
        if sched is not None:
            sched.stop()
        if orch is not None:
            orch.close()
        store.close()
    return 0


def _cmd_cleanup(cfg: Config, days: int | None) -> int:
    store = _open_store(cfg)
    try:
        n = run_retention(store, days if days is not None else cfg.retention_days)
    finally:
        store.close()
    print(json.dumps({"deactivated": n}))
    return 0


def _cmd_stats(cfg: Config) -> int:
    store = _open_store(cfg)
    try:
        payload = {"stats": store.stats(), "run_stats": store.run_stats()}
    finally:
        store.close()
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _cmd_status(cfg: Config) -> int:
    sched = Scheduler.from_config(cfg, orchestrator=None)
    sched.install()
    print(json.dumps(sched.get_status(), ensure_ascii=False, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv(override=False)
    args = _parse_args(argv)
    cfg = Config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        cfg.validate()
        if args.command == "serve":
            logger.info("Sources: %s, mode=%s, tz=%s", cfg.source_codes, cfg.fetch_mode, cfg.timezone)
            return _cmd_serve(cfg)
        if args.command == "once":
            return _cmd_once(cfg)
        if args.command == "cleanup":
            return _cmd_cleanup(cfg, args.days)
        if args.command == "stats":
            return _cmd_stats(cfg)
        return _cmd_status(cfg)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except NewsstackError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
