"""Entities read and written by the scheduled test pipeline.

Timestamps are timezone-aware UTC datetimes in memory and ISO-8601 text in
the datastore.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

PLAN_TIERS = ("free", "starter", "prime", "elite", "elite_plus", "career")

QUESTION_TYPES = ("MCQ", "short-answer")

STATUS_PENDING = "pending"
STATUS_NOTIFIED = "notified"

RECIPIENT_USER = "user"
RECIPIENT_GUARDIAN = "guardian"

CHANNEL_WHATSAPP = "whatsapp"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value) -> datetime | None:
    """Parse a stored timestamp. Naive values are taken to be UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Schedule:
    id: int
    owner_user_id: int
    enabled: bool = True
    last_run: datetime | None = None
    recurrence_policy: str = "daily"


@dataclass
class MaterialRecord:
    id: int
    owner_user_id: int
    display_name: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class Question:
    question_text: str
    expected_answer: str
    options: tuple[str, ...] | None = None  # exactly 4 for MCQ, None for open-form

    @property
    def is_mcq(self) -> bool:
        return self.options is not None

    def to_dict(self) -> dict:
        """Serialize in the shape the test-taking UI reads."""
        data: dict = {"question": self.question_text}
        if self.options is not None:
            data["options"] = list(self.options)
        data["answer"] = self.expected_answer
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Question:
        options = data.get("options")
        return cls(
            question_text=data["question"],
            expected_answer=data["answer"],
            options=tuple(options) if options is not None else None,
        )


@dataclass
class GeneratedTest:
    id: int
    schedule_id: int | None
    owner_user_id: int
    payload: tuple[Question, ...]
    status: str = STATUS_PENDING
    scheduled_for: datetime | None = None
    notified_at: datetime | None = None
    question_type: str = "MCQ"
    created_at: datetime | None = None


@dataclass
class UserProfile:
    id: int
    plan_tier: str = "free"
    guardian_contact: str | None = None
    guardian_verified: bool = False
    phone: str | None = None
    name: str = ""
    ext_id: str = ""

    @property
    def display_name(self) -> str:
        return self.name or f"student #{self.id}"


@dataclass
class NotificationLogEntry:
    generated_test_id: int
    user_id: int
    channel: str
    recipient: str
    message: str
    success: bool
    sent_at: datetime = field(default_factory=utcnow)
    failure_detail: str = ""
    id: int | None = None


def summarize_payload(payload, question_type: str = "MCQ") -> dict:
    """Small summary of a test payload for notification messages."""
    return {"question_count": len(payload), "question_type": question_type}
