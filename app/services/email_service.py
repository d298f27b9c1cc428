"""
Email notifications with SendGrid
Best-effort: failures are logged and reported as False, never raised
"""

from typing import List, Dict, Optional, Any
import asyncio
import enum
import logging

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from jinja2 import Template

from app.config import settings
from app.core.metrics import NOTIFICATIONS

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    ADDED = "added"
    PROMOTED = "promoted"
    SESSION_CHANGED = "session_changed"
    SESSION_CANCELLED = "session_cancelled"
    WELCOME = "welcome"


_LAYOUT = """
<!DOCTYPE html>
<html>
<body>
    <div style="max-width: 600px; margin: 0 auto; padding: 20px; font-family: Arial, sans-serif;">
        __BODY__
        <p>Best regards,<br>{{ club_name }} Team</p>
    </div>
</body>
</html>
"""

_SESSION_BLOCK = """
<div style="border: 1px solid #ddd; padding: 15px; margin: 20px 0;">
    <h3>{{ session_name }}</h3>
    <p><strong>Date:</strong> {{ session_date }}</p>
    <p><strong>Time:</strong> {{ session_time }}</p>
    <p><strong>Location:</strong> {{ session_location }}</p>
</div>
"""

TEMPLATES: Dict[NotificationKind, Dict[str, str]] = {
    NotificationKind.ADDED: {
        "subject": "You're on the waitlist: {{ session_name }}",
        "body": """
            <h2>You've been added to the waitlist</h2>
            <p>The session is currently full. Your waitlist position is <strong>#{{ position }}</strong>.</p>
            """ + _SESSION_BLOCK + """
            <p>We'll email you as soon as a spot opens up.</p>
        """,
    },
    NotificationKind.PROMOTED: {
        "subject": "A spot opened up: {{ session_name }}",
        "body": """
            <h2>Good news, you're in!</h2>
            <p>A spot opened up and you have been moved from the waitlist to the session.</p>
            """ + _SESSION_BLOCK + """
            <p>If you can no longer attend, please cancel at least 24 hours in advance.</p>
        """,
    },
    NotificationKind.SESSION_CHANGED: {
        "subject": "Session updated: {{ session_name }}",
        "body": """
            <h2>Your session has changed</h2>
            <p>The following details were updated: {{ changed_fields | join(', ') }}.</p>
            """ + _SESSION_BLOCK + """
            <p>Current status: {{ session_status }}</p>
        """,
    },
    NotificationKind.SESSION_CANCELLED: {
        "subject": "Session cancelled: {{ session_name }}",
        "body": """
            <h2>Your session has been cancelled</h2>
            """ + _SESSION_BLOCK + """
            <p>Your registration has been removed. Check the schedule for other sessions.</p>
        """,
    },
    NotificationKind.WELCOME: {
        "subject": "Welcome to {{ club_name }}!",
        "body": """
            <h2>Welcome, {{ user_name }}!</h2>
            <p>We're excited to have you join our community. You can now:</p>
            <ul>
                <li>Register for tennis sessions</li>
                <li>Join club events</li>
                <li>Connect with other tennis enthusiasts</li>
            </ul>
        """,
    },
}


def session_context(session) -> Dict[str, Any]:
    """Template variables describing a session"""
    return {
        "session_id": str(session.id),
        "session_name": session.name,
        "session_date": session.date.isoformat() if session.date else "",
        "session_time": session.time.strftime("%H:%M") if session.time else "",
        "session_location": session.location,
        "session_status": getattr(session.status, "value", session.status),
    }


class EmailService:
    """Notification dispatcher backed by SendGrid"""

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.FROM_EMAIL
        self.client = SendGridAPIClient(self.api_key) if self.api_key else None
        self.templates = self._load_templates()

    def _load_templates(self) -> Dict[NotificationKind, Dict[str, Template]]:
        return {
            kind: {
                "subject": Template(parts["subject"]),
                "html": Template(_LAYOUT.replace("__BODY__", parts["body"])),
            }
            for kind, parts in TEMPLATES.items()
        }

    def render(self, kind: NotificationKind, context: Dict) -> Dict[str, str]:
        template = self.templates[kind]
        context = {"club_name": settings.FROM_NAME, **context}
        return {
            "subject": template["subject"].render(**context).strip(),
            "html": template["html"].render(**context),
        }

    async def notify(
        self,
        kind: NotificationKind,
        recipients: List[str],
        context: Dict
    ) -> bool:
        """
        Send one templated email per recipient.

        Returns True only if every message was accepted. Never raises.
        """
        if not recipients:
            return True
        if not settings.NOTIFICATIONS_ENABLED:
            logger.info(f"Notifications disabled, skipping {kind.value} for {len(recipients)} recipients")
            return False

        try:
            rendered = self.render(kind, context)
        except Exception as e:
            logger.error(f"Failed to render {kind.value} notification: {e}", exc_info=True)
            NOTIFICATIONS.labels(kind=kind.value, result="failed").inc(len(recipients))
            return False

        results = await asyncio.gather(
            *(self._send(email, rendered["subject"], rendered["html"]) for email in recipients)
        )
        sent = sum(1 for ok in results if ok)
        NOTIFICATIONS.labels(kind=kind.value, result="sent").inc(sent)
        NOTIFICATIONS.labels(kind=kind.value, result="failed").inc(len(results) - sent)
        return sent == len(results)

    async def _send(self, to_email: str, subject: str, html_content: str) -> bool:
        if self.client is None:
            logger.warning(f"SendGrid API key not configured, email to {to_email} not sent")
            return False

        try:
            message = Mail(
                from_email=self.from_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content
            )
            # SendGrid's client is blocking
            response = await asyncio.to_thread(self.client.send, message)

            logger.info(f"Email sent to {to_email}: {response.status_code}")
            return response.status_code in [200, 201, 202]

        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return False


# Initialize global email service
email_service = EmailService()


def get_notifier() -> EmailService:
    return email_service
