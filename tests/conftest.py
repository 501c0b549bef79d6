"""
Test fixtures for PrepMate Scheduled Tests.

Provides app, client and db fixtures with file-based SQLite, plus fake AI and
WhatsApp collaborators so no test reaches a real provider.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)

# id, ext_id, name, phone, plan, guardian, verified
TEST_USERS = [
    (1, "auth-free", "Free Student", "+15550000001", "free", None, 0),
    (2, "auth-elite", "Elite Student", "+15550000002", "elite", "+15550000902", 1),
    (3, "auth-unverified", "Unverified Student", "+15550000003", "elite_plus", "+15550000903", 0),
    (4, "auth-nophone", "No Phone Student", None, "free", None, 0),
]


def make_questions(count: int = 5, question_type: str = "MCQ") -> list[dict]:
    items = []
    for i in range(1, count + 1):
        item = {"question": f"What does organelle {i} do?", "answer": "A"}
        if question_type == "MCQ":
            item["options"] = [f"A{i}", f"B{i}", f"C{i}", f"D{i}"]
        else:
            item["answer"] = f"It produces energy ({i})"
        items.append(item)
    return items


class FakeLLM:
    """Stands in for LLMClient. Responses are consumed in order; the last one repeats."""

    def __init__(self, *responses):
        self.responses = list(responses) or [json.dumps(make_questions())]
        self.calls: list[tuple[str, str]] = []

    def complete(self, prompt: str, system: str = ""):
        self.calls.append((prompt, system))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response, {"provider": "fake", "model": "fake-1", "latency_ms": 1,
                          "total_tokens_est": 10, "cost_estimate_usd": 0.0}


class FakeGateway:
    """Stands in for WhatsAppGateway and records every message."""

    def __init__(self, configured: bool = True, fail_for: tuple = (), undelivered_for: tuple = ()):
        self.is_configured = configured
        self.from_number = "whatsapp:+14155238886"
        self.fail_for = set(fail_for)
        self.undelivered_for = set(undelivered_for)
        self.sent: list[dict] = []

    def send(self, from_: str, to: str, body: str) -> dict:
        self.sent.append({"from": from_, "to": to, "body": body})
        if to in self.fail_for:
            raise ConnectionError(f"gateway refused {to}")
        status = "undelivered" if to in self.undelivered_for else "queued"
        return {"delivered": status != "undelivered", "sid": f"SM{len(self.sent)}", "status": status}


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "CRON_SECRET": "test-cron-secret",
        "SCHEDULER_ENABLED": False,
        "AI_PROVIDER": "openai",
        "OPENAI_API_KEY": "",
        "ANTHROPIC_API_KEY": "",
        "GOOGLE_API_KEY": "",
        "TWILIO_ACCOUNT_SID": "",
        "TWILIO_AUTH_TOKEN": "",
        "TWILIO_WHATSAPP_FROM": "",
        "QUESTION_COUNT": 5,
        "QUESTION_TYPE": "MCQ",
    })

    with app.app_context():
        from database import get_db

        db = get_db()
        for uid, ext_id, name, phone, plan, guardian, verified in TEST_USERS:
            db.execute(
                "INSERT INTO users (id, ext_id, name, email, phone, plan_tier, guardian_contact, "
                "guardian_verified, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (uid, ext_id, name, f"user{uid}@example.com", phone, plan, guardian, verified,
                 "2026-01-01T00:00:00+00:00"),
            )
        db.commit()

        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    from database import get_db
    return get_db()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def add_schedule(db):
    """Create a schedule; last_run is given as an age relative to NOW."""
    from db_stores import ScheduleStoreDB

    def _add(user_id: int, age: timedelta | None = timedelta(days=2), enabled: bool = True) -> int:
        last_run = NOW - age if age is not None else None
        return ScheduleStoreDB(db).create(user_id, enabled=enabled, last_run=last_run)

    return _add


@pytest.fixture
def add_upload(db):
    def _add(user_id: int, filename: str, age: timedelta = timedelta(hours=1)) -> int:
        cur = db.execute(
            "INSERT INTO uploads (user_id, filename, path, created_at) VALUES (?, ?, ?, ?)",
            (user_id, filename, f"uploads/{filename}", (NOW - age).isoformat()),
        )
        db.commit()
        return cur.lastrowid

    return _add


@pytest.fixture
def make_pipeline(app, db, clock):
    from pipeline import build_pipeline

    def _make(llm=None, gateway=None):
        return build_pipeline(
            app.config, db, clock=clock,
            llm=llm or FakeLLM(),
            gateway=gateway or FakeGateway(),
        )

    return _make
