"""
In-process scheduler — optional trigger for the scheduled test pipeline.

Production normally calls /api/cron/scheduled-tests or the console script
from an external cron. For a single long-running host, set
SCHEDULER_ENABLED=true and the app runs the pipeline itself every
SCHEDULER_INTERVAL_HOURS.
"""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler

from errors import DiscoveryError

JOB_ID = "scheduled_tests"


def _run_pipeline_job(app) -> None:
    from commands import run_scheduled_tests
    try:
        run_scheduled_tests(app)
    except DiscoveryError as e:
        app.logger.error("Scheduled test job could not discover schedules: %s", e)


def init_scheduler(app, start: bool = True) -> BackgroundScheduler:
    """Register the pipeline job on a background scheduler and start it."""
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.add_job(
        func=_run_pipeline_job,
        args=[app],
        trigger="interval",
        hours=float(app.config.get("SCHEDULER_INTERVAL_HOURS", 1)),
        id=JOB_ID,
        replace_existing=True,
        # one pass at a time; missed passes collapse into one
        max_instances=1,
        coalesce=True,
    )

    if start:
        scheduler.start()
        app.logger.info("Scheduler started (scheduled tests every %sh)",
                        app.config.get("SCHEDULER_INTERVAL_HOURS", 1))
    return scheduler
