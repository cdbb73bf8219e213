import logging
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

import httpx

from app_config import MAX_EMERGENCY_CONTACTS, PLATFORM_NAME

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SYSTOLIC_LIMIT = 140
DIASTOLIC_LIMIT = 90

TRIGGER_CONTACTS_REGISTERED = "contacts_registered"
TRIGGER_ABNORMAL_REPORT = "abnormal_report"
TRIGGER_REPORT_SHARED = "report_shared"
ALERT_TRIGGERS = {TRIGGER_CONTACTS_REGISTERED, TRIGGER_ABNORMAL_REPORT, TRIGGER_REPORT_SHARED}


class ContactValidationError(ValueError):
    pass


def validate_contact_emails(emails: Optional[List[str]]) -> List[str]:
    """Return cleaned emails or raise ContactValidationError. Nothing is persisted here."""
    if not emails or not isinstance(emails, list):
        raise ContactValidationError("At least one email address is required")
    cleaned = [(e or "").strip() for e in emails]
    if len(cleaned) > MAX_EMERGENCY_CONTACTS:
        raise ContactValidationError(f"At most {MAX_EMERGENCY_CONTACTS} emergency contacts are allowed")
    if len({e.lower() for e in cleaned}) != len(cleaned):
        raise ContactValidationError("Emails must be unique.")
    for email in cleaned:
        if not EMAIL_RE.match(email):
            raise ContactValidationError(f"Invalid email format: {email}")
    return cleaned


def parse_blood_pressure(value: Optional[str]) -> Optional[Tuple[int, int]]:
    if not value:
        return None
    match = re.match(r"^\s*(\d+)\s*/\s*(\d+)", value)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_abnormal_report(report: dict) -> bool:
    """Blood pressure above 140/90 (either number) is the only abnormal signal."""
    reading = parse_blood_pressure(report.get("blood_pressure"))
    if reading is None:
        return False
    systolic, diastolic = reading
    return systolic > SYSTOLIC_LIMIT or diastolic > DIASTOLIC_LIMIT


def user_display_name(user: dict) -> str:
    name = f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()
    return name or user.get("username") or f"A {PLATFORM_NAME} user"


def build_alert_message(
    trigger: str,
    user: dict,
    report: Optional[dict] = None,
    download_link: Optional[str] = None
) -> Tuple[str, str]:
    name = user_display_name(user)
    when = datetime.now().astimezone().strftime("%Y-%m-%d %H:%M")

    if trigger == TRIGGER_ABNORMAL_REPORT:
        subject = f"Health Alert from {PLATFORM_NAME}"
        html = (
            f"<p>Dear Family Member,<br>"
            f"This is an automated alert from {PLATFORM_NAME}.<br>"
            f"<b>{name}</b> has uploaded a health report with abnormal values.<br>"
            f"<b>Blood Pressure:</b> {(report or {}).get('blood_pressure')}<br>"
            f"<b>Time:</b> {when}<br>"
            f"Please check in with them if needed.<br>"
            f"<br>Thank you,<br>The {PLATFORM_NAME} Team</p>"
        )
    elif trigger == TRIGGER_REPORT_SHARED:
        subject = f"Health Report from {name}"
        html = (
            f"<p>Dear Family Member,<br>"
            f"{name} has shared a health report with you.<br>"
            f"<b>Report:</b> {(report or {}).get('file_name')}<br>"
            f"<b>Download:</b> <a href=\"{download_link}\">{download_link}</a><br>"
            f"<b>Time:</b> {when}<br>"
            f"<br>Thank you,<br>The {PLATFORM_NAME} Team</p>"
        )
    else:
        subject = f"Update from {PLATFORM_NAME}: {name} has added you as an emergency contact"
        html = (
            f"<p>Dear Family Member,<br>"
            f"This is an automated message from {PLATFORM_NAME} to let you know that "
            f"{name} has registered you as an emergency contact.<br>"
            f"<b>Time:</b> {when}<br>"
            f"You will be notified about important health updates, as requested by {name}.<br>"
            f"<br>Thank you,<br>The {PLATFORM_NAME} Team</p>"
        )
    return subject, html


class EmergencyAlertDispatcher:
    """
    Fan an email out to each emergency contact of a user.

    Delivery goes through the email webhook (ALERT_EMAIL_WEBHOOK_URL). When no
    webhook is configured the message is only logged. Every contact gets its
    own attempt; a failure is logged and reported, never raised, and never
    retried.
    """

    def __init__(
        self,
        webhook_url: str = "",
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.webhook_url = (webhook_url or "").strip()
        self.timeout = timeout
        self.transport = transport

    async def dispatch(
        self,
        user: dict,
        contacts: Iterable[dict],
        trigger: str,
        subject: Optional[str] = None,
        html: Optional[str] = None
    ) -> List[dict]:
        if trigger not in ALERT_TRIGGERS:
            raise ValueError(f"Unknown alert trigger: {trigger}")
        if subject is None or html is None:
            default_subject, default_html = build_alert_message(trigger, user)
            subject = subject or default_subject
            html = html or default_html

        contacts = list(contacts)
        if not contacts:
            logger.info(f"No emergency contacts to notify for user {user.get('id')} ({trigger})")
            return []

        results = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for contact in contacts:
                results.append(await self._send_one(client, user, contact, trigger, subject, html))
        return results

    async def _send_one(self, client, user, contact, trigger, subject, html) -> dict:
        email = contact.get("email")
        if not self.webhook_url:
            logger.info(f"Email hook not configured; alert for {email}: {subject}")
            return {"email": email, "sent": False, "reason": "hook_not_configured"}

        envelope = {
            "channel": "email",
            "event_type": trigger,
            "user_id": user.get("id"),
            "to": email,
            "subject": subject,
            "html": html,
            "occurred_at": datetime.now(timezone.utc).isoformat()
        }
        try:
            response = await client.post(self.webhook_url, json=envelope)
            ok = 200 <= response.status_code < 300
            result = {"email": email, "sent": ok, "status_code": response.status_code}
            if not ok:
                result["reason"] = (response.text or "non_2xx")[:240]
                logger.error(f"Failed to send alert email to {email}: HTTP {response.status_code}")
            else:
                logger.info(f"Sent {trigger} alert email to {email}")
            return result
        except Exception as exc:
            logger.error(f"Failed to send alert email to {email}: {exc}")
            return {"email": email, "sent": False, "reason": str(exc)[:240]}


async def alert_if_abnormal(
    dispatcher: EmergencyAlertDispatcher,
    user: dict,
    report: dict,
    contacts: Iterable[dict]
) -> Optional[List[dict]]:
    """Dispatch an abnormal-report alert; None when the report is normal."""
    if not is_abnormal_report(report):
        return None
    subject, html = build_alert_message(TRIGGER_ABNORMAL_REPORT, user, report=report)
    return await dispatcher.dispatch(user, contacts, TRIGGER_ABNORMAL_REPORT, subject, html)
