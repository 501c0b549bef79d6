"""Core routes — health checks and the cron trigger."""

from __future__ import annotations

import logging
import time

from flask import Blueprint, current_app, jsonify, request

from errors import DiscoveryError

logger = logging.getLogger(__name__)

bp = Blueprint("core", __name__)


# ── Health checks ─────────────────────────────────────────

_start_time = time.time()


@bp.route("/health")
def health():
    uptime = int(time.time() - _start_time)
    return jsonify({"status": "ok", "uptime_seconds": uptime})


@bp.route("/ready")
def ready():
    try:
        from database import get_db
        db = get_db()
        db.execute("SELECT 1").fetchone()
        return jsonify({"status": "ready"}), 200
    except Exception as exc:
        logger.error("Readiness check failed: %s", exc, exc_info=True)
        return jsonify({
            "status": "not_ready",
        }), 503


@bp.route("/live")
def live():
    return jsonify({"status": "alive"}), 200


# ── Cron Endpoint ─────────────────────────────────────────
# Called by an external cron. Authenticated via CRON_SECRET header.

def _verify_cron_secret():
    """Verify the request carries a valid CRON_SECRET header."""
    expected = current_app.config.get("CRON_SECRET", "")
    if not expected:
        return False
    return request.headers.get("Authorization") == f"Bearer {expected}"


@bp.route("/api/cron/scheduled-tests", methods=["GET", "POST"])
def cron_scheduled_tests():
    if not _verify_cron_secret():
        return jsonify({"error": "Unauthorized"}), 401
    try:
        from commands import run_scheduled_tests
        report = run_scheduled_tests(current_app._get_current_object())
        return jsonify({"status": "ok", "job": "scheduled-tests", "report": report.to_dict()})
    except DiscoveryError as e:
        logger.error("Cron scheduled-tests failed: %s", e, exc_info=True)
        return jsonify({"error": "Cron job failed."}), 500
