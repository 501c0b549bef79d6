"""CLI entry points.

    prepmate-scheduled-tests              # console script, one invocation
    flask --app app generate-scheduled-tests
    flask --app app seed-demo

Exit status is 0 whenever the invocation completed, even if some schedules
failed, and 1 only when due schedules could not be discovered.
"""

from __future__ import annotations

import logging
import sys

import click

from database import get_db
from errors import DiscoveryError
from models import utcnow
from pipeline import PipelineReport, build_pipeline

logger = logging.getLogger(__name__)


def run_scheduled_tests(app, clock=utcnow, llm=None, gateway=None) -> PipelineReport:
    """Run one pipeline invocation inside an app context. Raises DiscoveryError."""
    with app.app_context():
        pipeline = build_pipeline(app.config, get_db(), clock=clock, llm=llm, gateway=gateway)
        return pipeline.run()


def register_commands(app) -> None:
    @app.cli.command("generate-scheduled-tests")
    def generate_scheduled_tests_command():
        """Generate tests for due schedules and send reminders."""
        try:
            report = run_scheduled_tests(app)
        except DiscoveryError as e:
            logger.error("Scheduler main error: %s", e)
            raise SystemExit(1)
        click.echo(
            f"due={report.due_count} done={report.completed} "
            f"aborted={report.aborted} swept={len(report.swept)}"
        )

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Insert demo users, uploads and schedules."""
        from seed_demo_data import seed
        with app.app_context():
            summary = seed(get_db())
        click.echo(f"Seeded {summary['users']} users and {summary['schedules']} schedules.")


def main() -> int:
    from app import create_app

    try:
        app = create_app()
    except Exception:
        logger.exception("Scheduler could not start (datastore unreachable?)")
        return 1

    try:
        report = run_scheduled_tests(app)
    except DiscoveryError as e:
        logger.error("Scheduler main error: %s", e)
        return 1

    logger.info("Scheduler finished at %s", report.finished_at)
    return 0


if __name__ == "__main__":
    sys.exit(main())
