"""
Datastore layer for PrepMate scheduled tests.

Uses raw sqlite3 with WAL mode and parameterized queries, or PostgreSQL
through pg_compat when DATABASE is a postgres URL.
A schema_version table handles migrations.
"""

from __future__ import annotations

import fcntl
import sqlite3
from pathlib import Path

from flask import current_app, g

from models import to_iso, utcnow
from pg_compat import connect_pg, is_postgres_url

DEFAULT_DB_PATH = str(Path(__file__).parent / "prepmate.db")


SCHEMA = """
-- Migration tracking
CREATE TABLE IF NOT EXISTS schema_version (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

-- Users (owned by the auth/profile pages; read-only here)
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ext_id TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL DEFAULT '',
    email TEXT,
    phone TEXT,
    plan_tier TEXT NOT NULL DEFAULT 'free',
    guardian_contact TEXT,
    guardian_verified INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT ''
);

-- Uploaded study materials (metadata only)
CREATE TABLE IF NOT EXISTS uploads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    filename TEXT NOT NULL,
    path TEXT NOT NULL DEFAULT '',
    mime TEXT NOT NULL DEFAULT '',
    size INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_uploads_user_created ON uploads(user_id, created_at);

-- Recurring test schedules
CREATE TABLE IF NOT EXISTS test_schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    enabled INTEGER NOT NULL DEFAULT 1,
    recurrence_policy TEXT NOT NULL DEFAULT 'daily',
    last_run TEXT,
    created_at TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_schedules_enabled ON test_schedules(enabled);

-- Generated tests (one per due schedule per pass)
CREATE TABLE IF NOT EXISTS scheduled_tests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    schedule_id INTEGER REFERENCES test_schedules(id) ON DELETE SET NULL,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    test_payload TEXT NOT NULL,
    question_type TEXT NOT NULL DEFAULT 'MCQ',
    status TEXT NOT NULL DEFAULT 'pending',
    scheduled_for TEXT NOT NULL,
    notified_at TEXT,
    created_at TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_scheduled_tests_status ON scheduled_tests(status, scheduled_for);
CREATE INDEX IF NOT EXISTS idx_scheduled_tests_schedule ON scheduled_tests(schedule_id, status);

-- Reminder dispatch log (append-only)
CREATE TABLE IF NOT EXISTS reminder_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scheduled_test_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    channel TEXT NOT NULL,
    recipient TEXT NOT NULL DEFAULT 'user',
    message TEXT NOT NULL,
    success INTEGER NOT NULL,
    failure_detail TEXT NOT NULL DEFAULT '',
    sent_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reminder_logs_test ON reminder_logs(scheduled_test_id);
"""

# Versioned migrations: (version, sql). Applied in order, once.
MIGRATIONS: list[tuple[int, str]] = [
    (1, """
        CREATE TABLE IF NOT EXISTS pipeline_audit (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL,
            schedule_id INTEGER,
            scheduled_test_id INTEGER,
            user_id INTEGER,
            state TEXT NOT NULL,
            outcome TEXT NOT NULL,
            error_type TEXT NOT NULL DEFAULT '',
            detail TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_pipeline_audit_run ON pipeline_audit(run_id);
    """),
]


def connect(db_url: str):
    """Open a connection for a SQLite path or a PostgreSQL URL."""
    if is_postgres_url(db_url):
        return connect_pg(db_url)

    conn = sqlite3.connect(db_url)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def get_db():
    """Return a DB connection from Flask g, creating if needed."""
    if "db" not in g:
        g.db = connect(current_app.config.get("DATABASE", DEFAULT_DB_PATH))
    return g.db


def close_db(e=None) -> None:
    """Teardown handler — close DB connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db(db=None) -> None:
    """Execute schema DDL to create all tables."""
    db = db if db is not None else get_db()
    db.executescript(SCHEMA)
    db.commit()


def run_migrations(db=None, db_url: str | None = None) -> None:
    """Apply any unapplied versioned migrations.

    Uses file-based locking so two processes starting together on the same
    SQLite file do not race.
    """
    if db is None:
        db = get_db()
    if db_url is None:
        db_url = current_app.config.get("DATABASE", DEFAULT_DB_PATH)

    lock_file = None
    if not is_postgres_url(db_url) and db_url != ":memory:":
        lock_path = Path(db_url).with_suffix(".migration.lock")
        try:
            lock_file = open(lock_path, "w")
            fcntl.flock(lock_file, fcntl.LOCK_EX)
        except OSError:
            lock_file = None

    try:
        applied = {
            row["version"]
            for row in db.execute("SELECT version FROM schema_version").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version in applied:
                continue
            try:
                db.executescript(sql)
            except Exception as e:
                err_msg = str(e).lower()
                if "duplicate column" not in err_msg and "already exists" not in err_msg:
                    raise
            db.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (version, to_iso(utcnow())),
            )
            db.commit()
    finally:
        if lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def init_app(app) -> None:
    """Register teardown and create the schema once per process."""
    app.teardown_appcontext(close_db)

    with app.app_context():
        init_db()
        run_migrations()
