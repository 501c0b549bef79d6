"""
Pipeline audit — records the outcome of every schedule a run touches.

Events are written to both the pipeline_audit table and structured logging.
"""

from __future__ import annotations

import logging

from models import to_iso, utcnow

logger = logging.getLogger(__name__)


class PipelineAuditDB:
    def __init__(self, db):
        self.db = db

    def log_event(
        self,
        run_id: str,
        state: str,
        outcome: str,
        schedule_id: int | None = None,
        test_id: int | None = None,
        user_id: int | None = None,
        error_type: str = "",
        detail: str = "",
    ) -> None:
        """Insert an audit row and emit a structured log line."""
        try:
            self.db.execute(
                "INSERT INTO pipeline_audit (run_id, schedule_id, scheduled_test_id, user_id, "
                "state, outcome, error_type, detail, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (run_id, schedule_id, test_id, user_id, state, outcome, error_type, detail,
                 to_iso(utcnow())),
            )
            self.db.commit()
        except Exception as e:
            logger.warning("audit write failed for run %s: %s", run_id, e)

        logger.info(
            "audit: run=%s schedule=%s test=%s user=%s state=%s outcome=%s %s",
            run_id, schedule_id, test_id, user_id, state, outcome, error_type,
            extra={"run_id": run_id, "schedule_id": schedule_id, "user_id": user_id, "state": state},
        )

    def for_run(self, run_id: str) -> list[dict]:
        rows = self.db.execute(
            "SELECT * FROM pipeline_audit WHERE run_id = ? ORDER BY id", (run_id,)
        ).fetchall()
        return [{k: r[k] for k in r.keys()} for r in rows]
