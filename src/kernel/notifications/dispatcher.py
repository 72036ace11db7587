"""
Outbound notifications for directory events.

Delivery is fire-and-forget: a failed send is logged and never surfaces to
the operation that triggered it. Without SMTP credentials the dispatcher
only logs, which is what development and tests run with.
"""

import asyncio
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Dict, List, Optional

from src.config import Settings, get_settings
from src.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class OutboundMessage:
    """A rendered message ready for a transport."""

    template: str
    to: str
    subject: str
    context: Dict[str, str] = field(default_factory=dict)


class NotificationDispatcher:
    """
    Renders directory notifications and hands them to a transport.

    Subclasses override _deliver for a real channel.
    """

    def __init__(self, frontend_url: Optional[str] = None):
        self.frontend_url = (frontend_url or get_settings().frontend_url).rstrip("/")

    async def welcome(self, email: str, first_name: Optional[str] = None) -> bool:
        return await self._send(OutboundMessage(
            template="welcome",
            to=email,
            subject="Welcome aboard",
            context={"first_name": first_name or "", "login_url": f"{self.frontend_url}/login"},
        ))

    async def temporary_password(self, email: str, temporary_password: str) -> bool:
        return await self._send(OutboundMessage(
            template="temporary_password",
            to=email,
            subject="Your temporary password",
            context={"temporary_password": temporary_password},
        ))

    async def password_reset(self, email: str, token: str) -> bool:
        return await self._send(OutboundMessage(
            template="password_reset",
            to=email,
            subject="Reset your password",
            context={"reset_url": f"{self.frontend_url}/reset-password?token={token}"},
        ))

    async def verification(self, email: str, token: str) -> bool:
        return await self._send(OutboundMessage(
            template="verification",
            to=email,
            subject="Confirm your email address",
            context={"verify_url": f"{self.frontend_url}/verify-email?token={token}"},
        ))

    async def _send(self, message: OutboundMessage) -> bool:
        try:
            await self._deliver(message)
        except Exception:
            logger.warning(
                "Notification delivery failed",
                exc_info=True,
                extra={"template": message.template, "recipient": message.to},
            )
            return False
        return True

    async def _deliver(self, message: OutboundMessage) -> None:
        # Secrets stay out of the log line
        logger.info(
            "Notification queued (dev mode)",
            extra={"template": message.template, "recipient": message.to},
        )


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every message in memory instead of sending it."""

    def __init__(self, frontend_url: Optional[str] = None):
        super().__init__(frontend_url)
        self.sent: List[OutboundMessage] = []

    async def _deliver(self, message: OutboundMessage) -> None:
        self.sent.append(message)

    def templates(self) -> List[str]:
        return [m.template for m in self.sent]


_BODIES = {
    "welcome": "Hello {first_name},\n\nYour account is ready. Sign in at {login_url}\n",
    "temporary_password": (
        "Your password was reset by an administrator.\n\n"
        "Temporary password: {temporary_password}\n\nYou will be asked to change it when you sign in.\n"
    ),
    "password_reset": "Use this link to choose a new password:\n\n{reset_url}\n",
    "verification": "Confirm your email address:\n\n{verify_url}\n",
}


class SmtpDispatcher(NotificationDispatcher):
    """Sends plain-text mail through an SMTP relay with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        frontend_url: Optional[str] = None,
        timeout: float = 10.0,
    ):
        super().__init__(frontend_url)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.timeout = timeout

    def render(self, message: OutboundMessage) -> EmailMessage:
        mail = EmailMessage()
        mail["From"] = self.from_email
        mail["To"] = message.to
        mail["Subject"] = message.subject
        mail.set_content(_BODIES[message.template].format(**message.context))
        return mail

    async def _deliver(self, message: OutboundMessage) -> None:
        # smtplib blocks; keep it off the event loop
        await asyncio.to_thread(self._send_blocking, self.render(message))
        logger.info("Notification sent", extra={"template": message.template, "recipient": message.to})

    def _send_blocking(self, mail: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(mail)


def build_dispatcher(settings: Optional[Settings] = None) -> NotificationDispatcher:
    """SMTP when a relay account is configured, the logging dispatcher otherwise."""
    settings = settings or get_settings()
    if not settings.smtp_user:
        return NotificationDispatcher(settings.frontend_url)
    return SmtpDispatcher(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        from_email=settings.smtp_from_email,
        frontend_url=settings.frontend_url,
    )
