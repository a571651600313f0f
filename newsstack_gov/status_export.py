"""Status file for whatever reports on the ingester (dashboards, cron checks).

The file is replaced, never rewritten in place, so a reader sees either
the previous snapshot or the new one.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
from typing import Any, Dict

from .common_types import RunOutcome


def _write_json_atomic(path: str, payload: Dict[str, Any]) -> None:
    dest_dir = os.path.dirname(path) or "."
    os.makedirs(dest_dir, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=dest_dir, prefix=".status-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, default=str, allow_nan=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def export_status(
    path: str,
    status: Dict[str, Any],
    outcome: RunOutcome | None = None,
) -> None:
    """Write the scheduler *status* and the latest run to *path*.

    Without an explicit *outcome* the status's own ``last_outcome`` is
    reported as the latest run.
    """
    latest = outcome.to_dict() if outcome is not None else status.get("last_outcome")
    _write_json_atomic(path, {
        "generated_ts": time.time(),
        "scheduler": status,
        "latest_run": latest,
    })
