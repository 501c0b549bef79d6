"""Tests for the CLI entry points."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import FakeGateway, FakeLLM
from commands import main, run_scheduled_tests
from errors import DiscoveryError


def test_run_scheduled_tests(app, db, add_schedule, clock):
    sid = add_schedule(1)
    report = run_scheduled_tests(app, clock=clock, llm=FakeLLM(), gateway=FakeGateway())
    assert report.due_count == 1
    assert report.completed == 1
    row = db.execute("SELECT COUNT(*) AS cnt FROM scheduled_tests WHERE schedule_id = ?", (sid,)).fetchone()
    assert row["cnt"] == 1


class TestFlaskCommands:
    def test_generate_scheduled_tests(self, app, add_schedule):
        add_schedule(1)
        result = app.test_cli_runner().invoke(args=["generate-scheduled-tests"])
        assert result.exit_code == 0
        assert "due=1" in result.output

    def test_generate_discovery_failure(self, app):
        with patch("commands.run_scheduled_tests", side_effect=DiscoveryError("db down")):
            result = app.test_cli_runner().invoke(args=["generate-scheduled-tests"])
        assert result.exit_code == 1

    def test_seed_demo(self, app, db):
        result = app.test_cli_runner().invoke(args=["seed-demo"])
        assert result.exit_code == 0
        assert "Seeded 4 users" in result.output
        row = db.execute("SELECT COUNT(*) AS cnt FROM test_schedules").fetchone()
        assert row["cnt"] == 4


class TestMain:
    def test_exit_zero_even_when_schedules_fail(self, app, add_schedule):
        add_schedule(1)
        with patch("app.create_app", return_value=app):
            assert main() == 0

    def test_exit_one_on_discovery_failure(self, app):
        with patch("app.create_app", return_value=app), \
                patch("commands.run_scheduled_tests", side_effect=DiscoveryError("db down")):
            assert main() == 1

    def test_exit_one_when_app_cannot_start(self):
        with patch("app.create_app", side_effect=RuntimeError("could not connect")):
            assert main() == 1

    def test_production_without_cron_secret_reaches_discovery(self, monkeypatch, tmp_path):
        from config import ProductionConfig

        monkeypatch.setenv("FLASK_ENV", "production")
        monkeypatch.setattr(ProductionConfig, "DATABASE", str(tmp_path / "prod.db"))
        monkeypatch.setattr(ProductionConfig, "CRON_SECRET", "")
        monkeypatch.setattr(ProductionConfig, "SCHEDULER_ENABLED", False)

        with pytest.warns(UserWarning, match="CRON_SECRET"), \
                patch("commands.run_scheduled_tests") as mock_run:
            assert main() == 0
        mock_run.assert_called_once()
