"""Tests for the command-line entry point and the atomic status export."""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from newsstack_gov.common_types import RunOutcome, RunResult
from newsstack_gov.errors import ConfigError
from newsstack_gov.run import main
from newsstack_gov.status_export import export_status


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("NEWSSTACK_SQLITE_PATH", str(tmp_path / "db" / "news.db"))
    monkeypatch.setenv("NEWSSTACK_STATUS_PATH", str(tmp_path / "status.json"))
    monkeypatch.setenv("NEWSSTACK_INTER_SOURCE_DELAY_MS", "0")
    monkeypatch.setenv("NEWSSTACK_FETCH_MODE", "synthetic")
    monkeypatch.setenv("NEWSSTACK_SOURCES", "fsc,fss,ftc")
    monkeypatch.delenv("NEWSSTACK_TRIGGERS", raising=False)
    monkeypatch.delenv("NEWSSTACK_TZ", raising=False)
    return tmp_path


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:
    def test_once_then_stats_then_cleanup(self, env, capsys):
        assert main(["once"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert [s["source_id"] for s in result["success"]] == ["fsc", "fss", "ftc"]
        assert result["errors"] == []
        assert 3 <= result["summary"]["total_new"] <= 15
        assert (env / "db" / "news.db").exists()

        assert main(["stats"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["stats"]["total"] == result["summary"]["total_new"]
        assert {r["source_id"] for r in stats["run_stats"]} == {"fsc", "fss", "ftc"}

        # synthetic items are at most a day old
        assert main(["cleanup", "--days", "30"]) == 0
        assert json.loads(capsys.readouterr().out) == {"deactivated": 0}

    def test_status_default_triggers(self, env, capsys):
        assert main(["status"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["active_trigger_count"] == 4
        assert status["next_trigger_name"] in {
            "weekday-09:00", "weekday-13:00", "weekday-17:00", "weekend",
        }
        assert status["next_trigger_time"] is not None
        assert status["is_running"] is False

    def test_status_custom_triggers(self, env, monkeypatch, capsys):
        monkeypatch.setenv("NEWSSTACK_TRIGGERS", "daily=30 6 * * *")
        assert main(["status"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["next_trigger_name"] == "daily"
        assert status["triggers"] == [
            {"name": "daily", "pattern": "30 6 * * *", "timezone": "Asia/Seoul"},
        ]

    def test_invalid_trigger_exits_2(self, env, monkeypatch):
        monkeypatch.setenv("NEWSSTACK_TRIGGERS", "broken=0 25 * * 1")
        assert main(["status"]) == 2

    def test_unknown_source_exits_2(self, env, monkeypatch):
        monkeypatch.setenv("NEWSSTACK_SOURCES", "fsc,nope")
        assert main(["once"]) == 2

    @pytest.mark.parametrize("days", ["0", "-1", "soon"])
    def test_cleanup_rejects_window_under_one_day(self, env, capsys, days):
        assert main(["once"]) == 0
        stored = json.loads(capsys.readouterr().out)["summary"]["total_new"]

        with pytest.raises(SystemExit) as exc:
            main(["cleanup", "--days", days])
        assert exc.value.code == 2

        assert main(["stats"]) == 0
        assert json.loads(capsys.readouterr().out)["stats"]["total"] == stored

    def test_serve_with_bad_triggers_opens_no_store(self, env, monkeypatch):
        monkeypatch.setenv("NEWSSTACK_TRIGGERS", "broken=0 25 * * 1")
        store_cls = MagicMock()
        monkeypatch.setattr("newsstack_gov.run.NewsStore", store_cls)
        assert main(["serve"]) == 2
        store_cls.assert_not_called()

    def test_serve_closes_store_when_setup_fails(self, env, monkeypatch):
        store_cls = MagicMock()
        monkeypatch.setattr("newsstack_gov.run.NewsStore", store_cls)
        monkeypatch.setattr("newsstack_gov.run.build_orchestrator",
                            MagicMock(side_effect=ConfigError("no adapter")))
        assert main(["serve"]) == 2
        store_cls.return_value.close.assert_called_once()

    def test_command_required(self, env):
        with pytest.raises(SystemExit):
            main([])


# ---------------------------------------------------------------------------
# Status export
# ---------------------------------------------------------------------------


class TestExportStatus:
    def _outcome(self):
        t = datetime(2024, 6, 10, 0, 0, tzinfo=timezone.utc)
        return RunOutcome(label="boot", status="completed", started_at=t, finished_at=t,
                          duration_s=1.23456, result=RunResult())

    def test_writes_payload(self, tmp_path):
        path = tmp_path / "nested" / "status.json"
        export_status(str(path), {"is_running": False, "active_trigger_count": 4}, self._outcome())
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["scheduler"]["active_trigger_count"] == 4
        assert data["latest_run"]["label"] == "boot"
        assert data["latest_run"]["duration_s"] == 1.235
        assert isinstance(data["generated_ts"], float)

    def test_latest_run_falls_back_to_status(self, tmp_path):
        path = tmp_path / "status.json"
        export_status(str(path), {"last_outcome": {"label": "manual"}})
        assert json.loads(path.read_text(encoding="utf-8"))["latest_run"] == {"label": "manual"}

    def test_failed_write_keeps_previous_file(self, tmp_path):
        path = tmp_path / "status.json"
        export_status(str(path), {"is_running": False})
        before = path.read_text(encoding="utf-8")

        with pytest.raises(ValueError):
            export_status(str(path), {"value": float("nan")})

        assert path.read_text(encoding="utf-8") == before
        assert [p.name for p in tmp_path.iterdir()] == ["status.json"]
        assert not any(name.endswith(".tmp") for name in os.listdir(tmp_path))
