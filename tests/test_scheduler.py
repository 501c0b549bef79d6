"""Tests for the in-process scheduler and logging setup."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from unittest.mock import patch

from errors import DiscoveryError
from logging_config import JSONFormatter
from scheduler import JOB_ID, _run_pipeline_job, init_scheduler


def test_registers_single_interval_job(app):
    app.config["SCHEDULER_INTERVAL_HOURS"] = 2
    scheduler = init_scheduler(app, start=False)
    job = scheduler.get_job(JOB_ID)
    assert job is not None
    assert job.trigger.interval == timedelta(hours=2)
    assert job.max_instances == 1
    assert job.coalesce is True


def test_job_survives_discovery_failure(app):
    with patch("commands.run_scheduled_tests", side_effect=DiscoveryError("db down")) as mock_run:
        _run_pipeline_job(app)
    mock_run.assert_called_once_with(app)


def test_json_formatter_includes_pipeline_context():
    record = logging.LogRecord("pipeline", logging.INFO, __file__, 1, "Processing schedule %s", (7,), None)
    record.run_id = "abc123"
    record.schedule_id = 7
    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Processing schedule 7"
    assert entry["run_id"] == "abc123"
    assert entry["schedule_id"] == 7
    assert "user_id" not in entry
