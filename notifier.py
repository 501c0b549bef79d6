"""
Reminder delivery over WhatsApp (Twilio).

WhatsAppGateway is a thin wrapper around the Twilio REST client.
NotificationDispatcher composes reminder messages, sends them through the
gateway and writes one reminder_logs row per attempt. Notification is
best-effort: nothing here raises for a delivery failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from errors import NotificationError
from escalation import PLAN_DISPLAY
from models import (
    CHANNEL_WHATSAPP,
    RECIPIENT_GUARDIAN,
    RECIPIENT_USER,
    NotificationLogEntry,
    UserProfile,
    utcnow,
)

logger = logging.getLogger(__name__)

GATEWAY_UNCONFIGURED = "gateway unconfigured"

WHATSAPP_PREFIX = "whatsapp:"

USER_MESSAGE = (
    "📚 PrepMate Reminder:\n"
    "Your scheduled test is ready!\n"
    "Test ID: {test_id}\n"
    "Questions: {question_count}\n"
    "Log in to take your test."
)

GUARDIAN_MESSAGE = (
    "📚 PrepMate Guardian Update:\n"
    "A new scheduled test is ready for {student}.\n"
    "Test ID: {test_id}\n"
    "Questions: {question_count}\n"
    "You receive this because guardian alerts are on for this PrepMate {plan} account."
)


def whatsapp_address(number: str) -> str:
    number = number.strip()
    if number.startswith(WHATSAPP_PREFIX):
        return number
    return f"{WHATSAPP_PREFIX}{number}"


class WhatsAppGateway:
    """Twilio WhatsApp sender."""

    FAILED_STATUSES = ("failed", "undelivered", "canceled")

    def __init__(self, account_sid: str = "", auth_token: str = "", from_number: str = "",
                 timeout: float = 15.0, client: Client | None = None) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = whatsapp_address(from_number) if from_number else ""
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_config(cls, config) -> WhatsAppGateway:
        return cls(
            account_sid=config.get("TWILIO_ACCOUNT_SID", ""),
            auth_token=config.get("TWILIO_AUTH_TOKEN", ""),
            from_number=config.get("TWILIO_WHATSAPP_FROM", ""),
            timeout=float(config.get("GATEWAY_TIMEOUT_SECONDS", 15)),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def client(self) -> Client:
        if self._client is None:
            self._client = Client(
                self.account_sid,
                self.auth_token,
                http_client=TwilioHttpClient(timeout=self.timeout),
            )
        return self._client

    def send(self, from_: str, to: str, body: str) -> dict:
        """Send one message. Raises whatever the Twilio client raises."""
        message = self.client().messages.create(from_=from_, to=to, body=body)
        status = (message.status or "").lower()
        return {
            "delivered": status not in self.FAILED_STATUSES,
            "sid": message.sid,
            "status": status,
        }


@dataclass
class DispatchResult:
    recipient: str
    status: str  # sent | failed | degraded | skipped
    log_id: int | None = None
    detail: str = ""

    @property
    def success(self) -> bool:
        return self.status == "sent"


class NotificationDispatcher:
    """Sends user and guardian reminders and records every attempt."""

    def __init__(self, gateway: WhatsAppGateway, users, log) -> None:
        self.gateway = gateway
        self.users = users
        self.log = log

    def notify_user(self, user_id: int, generated_test_id: int, payload_summary: dict) -> DispatchResult:
        message = USER_MESSAGE.format(
            test_id=generated_test_id,
            question_count=payload_summary.get("question_count", "?"),
        )
        if not self.gateway.is_configured:
            return self._record_degraded(RECIPIENT_USER, user_id, generated_test_id, message)

        try:
            phone = self.users.phone(user_id)
        except Exception as e:
            raise NotificationError(f"could not resolve contact for user {user_id}: {e}") from e
        if not phone:
            logger.warning("No phone found for user %s, skipping reminder for test %s",
                           user_id, generated_test_id)
            return DispatchResult(RECIPIENT_USER, "skipped", detail="no contact")

        return self._send(RECIPIENT_USER, user_id, generated_test_id, phone, message)

    def notify_guardian(self, profile: UserProfile, generated_test_id: int,
                        payload_summary: dict) -> DispatchResult:
        message = GUARDIAN_MESSAGE.format(
            student=profile.display_name,
            plan=PLAN_DISPLAY.get(profile.plan_tier, profile.plan_tier),
            test_id=generated_test_id,
            question_count=payload_summary.get("question_count", "?"),
        )
        if not self.gateway.is_configured:
            return self._record_degraded(RECIPIENT_GUARDIAN, profile.id, generated_test_id, message)

        if not profile.guardian_contact:
            logger.warning("No guardian contact for user %s, skipping escalation", profile.id)
            return DispatchResult(RECIPIENT_GUARDIAN, "skipped", detail="no contact")

        return self._send(RECIPIENT_GUARDIAN, profile.id, generated_test_id,
                          profile.guardian_contact, message)

    def _send(self, recipient: str, user_id: int, test_id: int, phone: str, message: str) -> DispatchResult:
        to = whatsapp_address(phone)
        try:
            result = self.gateway.send(self.gateway.from_number, to, message)
            success = bool(result.get("delivered"))
            detail = "" if success else f"gateway status: {result.get('status', 'unknown')}"
        except Exception as e:
            success = False
            detail = str(e) or e.__class__.__name__

        if success:
            logger.info("WhatsApp %s reminder sent for test %s", recipient, test_id)
        else:
            logger.error("WhatsApp %s reminder failed for test %s: %s", recipient, test_id, detail)

        log_id = self._append(recipient, user_id, test_id, message, success, detail)
        return DispatchResult(recipient, "sent" if success else "failed", log_id, detail)

    def _record_degraded(self, recipient: str, user_id: int, test_id: int, message: str) -> DispatchResult:
        logger.warning("Twilio not configured, %s reminder for test %s not sent", recipient, test_id)
        log_id = self._append(recipient, user_id, test_id, message, False, GATEWAY_UNCONFIGURED)
        return DispatchResult(recipient, "degraded", log_id, GATEWAY_UNCONFIGURED)

    def _append(self, recipient: str, user_id: int, test_id: int, message: str,
                success: bool, detail: str) -> int:
        entry = NotificationLogEntry(
            generated_test_id=test_id,
            user_id=user_id,
            channel=CHANNEL_WHATSAPP,
            recipient=recipient,
            message=message,
            success=success,
            sent_at=utcnow(),
            failure_detail=detail,
        )
        try:
            return self.log.append(entry)
        except Exception as e:
            raise NotificationError(f"could not record {recipient} reminder for test {test_id}: {e}") from e
