"""
DB-backed store classes for the scheduled test pipeline.

Each store wraps one table and takes its connection in the constructor so
the pipeline can be driven against any connection (Flask's per-request one,
a CLI-owned one, or a test database). Every write commits immediately: a
run interrupted between two writes leaves each of them either fully applied
or not applied at all.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from errors import DigestError, DiscoveryError, PersistenceError
from models import (
    PLAN_TIERS,
    STATUS_NOTIFIED,
    STATUS_PENDING,
    GeneratedTest,
    MaterialRecord,
    NotificationLogEntry,
    Question,
    Schedule,
    UserProfile,
    parse_ts,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

DUE_THRESHOLD = timedelta(hours=23)

# A malformed stored value (bad timestamp, corrupt payload JSON) costs one row, not the query
_ROW_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


def is_due(schedule: Schedule, now: datetime, threshold: timedelta = DUE_THRESHOLD) -> bool:
    """A schedule is due when enabled and never run, or last run more than threshold ago."""
    if not schedule.enabled:
        return False
    if schedule.last_run is None:
        return True
    return now - schedule.last_run > threshold


# ── Schedules ────────────────────────────────────────────────────────


class ScheduleStoreDB:
    """Recurring test schedules and their last-run timestamps."""

    def __init__(self, db, due_threshold: timedelta = DUE_THRESHOLD):
        self.db = db
        self.due_threshold = due_threshold

    def fetch_due_schedules(self, now: datetime | None = None) -> list[Schedule]:
        """Return enabled schedules whose last run is missing or older than the threshold."""
        now = now or utcnow()
        try:
            rows = self.db.execute(
                "SELECT id, user_id, enabled, last_run, recurrence_policy "
                "FROM test_schedules WHERE enabled = 1 ORDER BY id"
            ).fetchall()
        except Exception as e:
            raise DiscoveryError(f"could not list schedules: {e}") from e

        due = []
        for r in rows:
            try:
                schedule = self._row_to_schedule(r)
            except _ROW_ERRORS as e:
                logger.warning("Skipping schedule %s with unreadable row: %s", r["id"], e)
                continue
            if is_due(schedule, now, self.due_threshold):
                due.append(schedule)
        return due

    def mark_schedule_run(self, schedule_id: int, at: datetime | None = None) -> bool:
        """Advance last_run. Failures are logged and reported as False, never raised."""
        ts = to_iso(at or utcnow())
        try:
            self.db.execute(
                "UPDATE test_schedules SET last_run = ?, updated_at = ? WHERE id = ?",
                (ts, ts, schedule_id),
            )
            self.db.commit()
        except Exception as e:
            logger.warning("Failed to mark schedule %s last_run: %s", schedule_id, e)
            return False
        return True

    def get(self, schedule_id: int) -> Schedule | None:
        row = self.db.execute(
            "SELECT id, user_id, enabled, last_run, recurrence_policy "
            "FROM test_schedules WHERE id = ?",
            (schedule_id,),
        ).fetchone()
        return self._row_to_schedule(row) if row else None

    def create(self, user_id: int, enabled: bool = True, recurrence_policy: str = "daily",
               last_run: datetime | None = None) -> int:
        now = to_iso(utcnow())
        cur = self.db.execute(
            "INSERT INTO test_schedules (user_id, enabled, recurrence_policy, last_run, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, 1 if enabled else 0, recurrence_policy, to_iso(last_run), now, now),
        )
        self.db.commit()
        return cur.lastrowid

    @staticmethod
    def _row_to_schedule(r) -> Schedule:
        return Schedule(
            id=r["id"],
            owner_user_id=r["user_id"],
            enabled=bool(r["enabled"]),
            last_run=parse_ts(r["last_run"]),
            recurrence_policy=r["recurrence_policy"] or "daily",
        )


# ── Uploaded materials ───────────────────────────────────────────────


class MaterialStoreDB:
    """Read-only view of a user's uploaded study materials."""

    def __init__(self, db):
        self.db = db

    def recent(self, user_id: int, limit: int = 5) -> list[MaterialRecord]:
        """Newest uploads first. Raises DigestError if the query fails."""
        try:
            rows = self.db.execute(
                "SELECT id, user_id, filename, created_at FROM uploads "
                "WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        except Exception as e:
            raise DigestError(f"could not read uploads for user {user_id}: {e}") from e
        return [
            MaterialRecord(
                id=r["id"],
                owner_user_id=r["user_id"],
                display_name=r["filename"],
                created_at=parse_ts(r["created_at"]),
            )
            for r in rows
        ]


# ── Generated tests ──────────────────────────────────────────────────


class GeneratedTestStoreDB:
    """Generated test records. Payloads are written once and never updated."""

    def __init__(self, db):
        self.db = db

    def persist(self, schedule: Schedule | None, user_id: int, payload,
                scheduled_for: datetime | None = None, question_type: str = "MCQ") -> int:
        """Insert one pending test and return its id. Raises PersistenceError."""
        now = scheduled_for or utcnow()
        try:
            cur = self.db.execute(
                "INSERT INTO scheduled_tests (schedule_id, user_id, test_payload, question_type, "
                "status, scheduled_for, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    schedule.id if schedule else None,
                    user_id,
                    json.dumps([q.to_dict() for q in payload]),
                    question_type,
                    STATUS_PENDING,
                    to_iso(now),
                    to_iso(now),
                ),
            )
            self.db.commit()
        except Exception as e:
            raise PersistenceError(f"could not insert scheduled test for user {user_id}: {e}") from e

        if not cur.lastrowid:
            raise PersistenceError(f"insert for user {user_id} returned no id")
        return cur.lastrowid

    def get(self, test_id: int) -> GeneratedTest | None:
        row = self.db.execute(
            "SELECT * FROM scheduled_tests WHERE id = ?", (test_id,)
        ).fetchone()
        return self._row_to_test(row) if row else None

    def unmarked_for_schedule(self, schedule: Schedule) -> GeneratedTest | None:
        """A pending test persisted for this schedule after its last run.

        Only exists when an earlier invocation stopped between persisting the
        test and advancing the schedule.
        """
        params: list = [schedule.id, STATUS_PENDING]
        sql = "SELECT * FROM scheduled_tests WHERE schedule_id = ? AND status = ?"
        if schedule.last_run is not None:
            sql += " AND created_at > ?"
            params.append(to_iso(schedule.last_run))
        row = self.db.execute(sql + " ORDER BY id DESC LIMIT 1", tuple(params)).fetchone()
        return self._row_to_test(row) if row else None

    def pending_due(self, now: datetime | None = None) -> list[GeneratedTest]:
        rows = self.db.execute(
            "SELECT * FROM scheduled_tests WHERE status = ? AND scheduled_for <= ? ORDER BY id",
            (STATUS_PENDING, to_iso(now or utcnow())),
        ).fetchall()
        tests = []
        for r in rows:
            try:
                tests.append(self._row_to_test(r))
            except _ROW_ERRORS as e:
                logger.warning("Skipping pending test %s with unreadable row: %s", r["id"], e)
        return tests

    def mark_notified(self, test_id: int, at: datetime | None = None) -> bool:
        """pending → notified. Returns False if the record was not pending."""
        cur = self.db.execute(
            "UPDATE scheduled_tests SET status = ?, notified_at = ? WHERE id = ? AND status = ?",
            (STATUS_NOTIFIED, to_iso(at or utcnow()), test_id, STATUS_PENDING),
        )
        self.db.commit()
        return cur.rowcount == 1

    @staticmethod
    def _row_to_test(r) -> GeneratedTest:
        items = json.loads(r["test_payload"] or "[]")
        return GeneratedTest(
            id=r["id"],
            schedule_id=r["schedule_id"],
            owner_user_id=r["user_id"],
            payload=tuple(Question.from_dict(item) for item in items),
            status=r["status"],
            scheduled_for=parse_ts(r["scheduled_for"]),
            notified_at=parse_ts(r["notified_at"]),
            question_type=r["question_type"],
            created_at=parse_ts(r["created_at"]),
        )


# ── Users ────────────────────────────────────────────────────────────


class UserStoreDB:
    """Read-only user / plan lookups."""

    def __init__(self, db):
        self.db = db

    def profile(self, user_id: int) -> UserProfile | None:
        row = self.db.execute(
            "SELECT id, ext_id, name, phone, plan_tier, guardian_contact, guardian_verified "
            "FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        if not row:
            return None
        tier = (row["plan_tier"] or "free").strip().lower().replace("-", "_")
        if tier not in PLAN_TIERS:
            logger.warning("User %s has unknown plan tier %r, treating as free", user_id, tier)
            tier = "free"
        return UserProfile(
            id=row["id"],
            plan_tier=tier,
            guardian_contact=row["guardian_contact"] or None,
            guardian_verified=bool(row["guardian_verified"]),
            phone=row["phone"] or None,
            name=row["name"] or "",
            ext_id=row["ext_id"] or "",
        )

    def phone(self, user_id: int) -> str | None:
        row = self.db.execute("SELECT phone FROM users WHERE id = ?", (user_id,)).fetchone()
        return (row["phone"] or None) if row else None


# ── Reminder log ─────────────────────────────────────────────────────


class NotificationLogDB:
    """Append-only audit trail of reminder dispatch attempts."""

    def __init__(self, db):
        self.db = db

    def append(self, entry: NotificationLogEntry) -> int:
        cur = self.db.execute(
            "INSERT INTO reminder_logs (scheduled_test_id, user_id, channel, recipient, message, "
            "success, failure_detail, sent_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (entry.generated_test_id, entry.user_id, entry.channel, entry.recipient,
             entry.message, 1 if entry.success else 0, entry.failure_detail,
             to_iso(entry.sent_at)),
        )
        self.db.commit()
        entry.id = cur.lastrowid
        return cur.lastrowid

    def for_test(self, test_id: int) -> list[NotificationLogEntry]:
        rows = self.db.execute(
            "SELECT * FROM reminder_logs WHERE scheduled_test_id = ? ORDER BY id",
            (test_id,),
        ).fetchall()
        return [
            NotificationLogEntry(
                id=r["id"],
                generated_test_id=r["scheduled_test_id"],
                user_id=r["user_id"],
                channel=r["channel"],
                recipient=r["recipient"],
                message=r["message"],
                success=bool(r["success"]),
                sent_at=parse_ts(r["sent_at"]),
                failure_detail=r["failure_detail"],
            )
            for r in rows
        ]
