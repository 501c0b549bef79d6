"""
Seed Demo Data — Standalone script and pytest fixture.

Creates 4 demo students on different plans (free, pro, elite with a verified
guardian, elite with an unverified guardian), a few uploads each, and one
schedule per student that is already due.

Usage:
    python seed_demo_data.py           # Seed into the running database
    python seed_demo_data.py --reset   # Clear demo data first
"""

from __future__ import annotations

import sys
from datetime import timedelta

from models import to_iso, utcnow

DEMO_STUDENTS = [
    {"name": "Alice Chen", "email": "alice@demo.prepmate", "phone": "+15550000201",
     "plan": "free", "guardian": None, "verified": False,
     "uploads": ["cell_structure.pdf", "osmosis_notes.docx"]},
    {"name": "Bob Tanaka", "email": "bob@demo.prepmate", "phone": "+15550000202",
     "plan": "pro", "guardian": "+15550000302", "verified": True,
     "uploads": ["kinematics.pdf"]},
    {"name": "Clara Schmidt", "email": "clara@demo.prepmate", "phone": "+15550000203",
     "plan": "elite", "guardian": "+15550000303", "verified": True,
     "uploads": ["photosynthesis.pdf", "dna_replication.pdf", "enzymes.pptx"]},
    {"name": "David Kim", "email": "david@demo.prepmate", "phone": "+15550000204",
     "plan": "elite_plus", "guardian": "+15550000304", "verified": False,
     "uploads": []},
]


def seed(db, start_uid: int = 200) -> dict:
    """Seed demo data into the database. Returns summary dict."""
    now = utcnow()
    upload_count = 0
    schedule_count = 0

    for i, student in enumerate(DEMO_STUDENTS):
        uid = start_uid + i
        db.execute(
            "INSERT OR IGNORE INTO users (id, ext_id, name, email, phone, plan_tier, "
            "guardian_contact, guardian_verified, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (uid, f"demo-auth-{uid}", student["name"], student["email"], student["phone"],
             student["plan"], student["guardian"], 1 if student["verified"] else 0, to_iso(now)),
        )

        for j, filename in enumerate(student["uploads"]):
            db.execute(
                "INSERT INTO uploads (user_id, filename, path, mime, size, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (uid, filename, f"uploads/{uid}/{filename}", "application/octet-stream",
                 1024 * (j + 1), to_iso(now - timedelta(days=j + 1))),
            )
            upload_count += 1

        # last ran two days ago, so the next pass picks it up
        db.execute(
            "INSERT INTO test_schedules (user_id, enabled, recurrence_policy, last_run, "
            "created_at, updated_at) VALUES (?, 1, 'daily', ?, ?, ?)",
            (uid, to_iso(now - timedelta(days=2)), to_iso(now), to_iso(now)),
        )
        schedule_count += 1

    db.commit()
    return {
        "users": len(DEMO_STUDENTS),
        "uploads": upload_count,
        "schedules": schedule_count,
    }


def clear_demo(db, start_uid: int = 200) -> None:
    """Remove all demo data."""
    uids = list(range(start_uid, start_uid + len(DEMO_STUDENTS)))
    placeholders = ",".join("?" * len(uids))

    for table in ("reminder_logs", "scheduled_tests", "test_schedules", "uploads"):
        db.execute(f"DELETE FROM {table} WHERE user_id IN ({placeholders})", uids)

    db.execute(f"DELETE FROM users WHERE id IN ({placeholders})", uids)
    db.commit()


if __name__ == "__main__":
    from app import create_app
    from database import get_db

    app = create_app()
    with app.app_context():
        db = get_db()
        if "--reset" in sys.argv:
            clear_demo(db)
            print("[Seed] Demo data cleared.")
        result = seed(db)
        print(f"[Seed] Done: {result}")
