"""
PrepMate Scheduled Tests — Flask application

Hosts the scheduled test pipeline: the cron trigger, health checks, the
scheduled-test lookup used by the test-taking page, and CLI commands.
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask

import database
from blueprints import register_blueprints


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import config_by_name
    env = os.environ.get("FLASK_ENV", "development")
    cfg = config_by_name.get(env, config_by_name["development"])
    app.config.from_object(cfg)
    if test_config is not None:
        app.config.update(test_config)
    elif hasattr(cfg, "validate"):
        cfg.validate()

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Schema + teardown
    database.init_app(app)

    register_blueprints(app)

    from commands import register_commands
    register_commands(app)

    # In-process trigger (off by default; cron or the CLI is the usual trigger)
    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        from scheduler import init_scheduler
        init_scheduler(app)

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
