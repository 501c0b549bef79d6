"""Guardian escalation policy.

Subscribers on the top study plans get their guardian/parent copied on
test reminders, once the guardian's contact has been verified.
"""

from __future__ import annotations

from models import UserProfile

PLAN_DISPLAY = {
    "free": "Free",
    "starter": "Starter",
    "prime": "Prime",
    "elite": "Elite",
    "elite_plus": "Elite Plus",
    "career": "Career Counseling",
}

GUARDIAN_ALERT_PLANS = frozenset({"elite", "elite_plus"})


def should_notify_guardian(profile: UserProfile | None) -> bool:
    """True iff the plan includes guardian alerts and the contact is present and verified."""
    if profile is None:
        return False
    if profile.plan_tier not in GUARDIAN_ALERT_PLANS:
        return False
    if not profile.guardian_contact or not profile.guardian_contact.strip():
        return False
    return profile.guardian_verified is True
