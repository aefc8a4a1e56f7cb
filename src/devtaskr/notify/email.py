# src/devtaskr/notify/email.py

from __future__ import annotations

import asyncio
import html
import logging
from datetime import date

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, Mail, To

from ..core.errors import ConfigError, NotificationError

logger = logging.getLogger(__name__)

DEFAULT_SENDER_NAME = "DevTaskr"


def render_completion_email(
        *,
        title: str,
        completed_by: str | None,
        description: str,
        message: str,
        completed_on: date,
) -> tuple[str, str, str]:
    """Return (subject, html, plain_text) for a task-completed email."""
    who = (completed_by or "").strip() or "A team member"
    when = completed_on.strftime("%Y-%m-%d")
    subject = f"Task Completed: {title}"

    esc = html.escape
    html_body = (
        "<html>\n"
        "  <body>\n"
        "    <h2>Task Completed</h2>\n"
        f"    <p><strong>Task:</strong> {esc(title)}</p>\n"
        f"    <p><strong>Completed By:</strong> {esc(who)}</p>\n"
        f"    <p><strong>Completion Date:</strong> {esc(when)}</p>\n"
        f"    <p><strong>Description:</strong> {esc(description)}</p>\n"
        f"    <p><strong>Message:</strong> {esc(message)}</p>\n"
        "  </body>\n"
        "</html>\n"
    )
    text_body = (
        "Task Completed\n\n"
        f"Task: {title}\n"
        f"Completed By: {who}\n"
        f"Completion Date: {when}\n"
        f"Description: {description}\n"
        f"Message: {message}\n"
    )
    return subject, html_body, text_body


class SendGridMailer:
    """Mailer port over the SendGrid API. The SDK is blocking, so sends run in a worker thread."""

    def __init__(self, api_key: str, sender_email: str, *, sender_name: str = DEFAULT_SENDER_NAME) -> None:
        if not api_key:
            raise ConfigError("SendGrid API key is not set. Set DEVTASKR_SENDGRID_API_KEY in your .env.")
        if not sender_email:
            raise ConfigError("Sender email is not set. Set DEVTASKR_SENDER_EMAIL in your .env.")
        self._client = SendGridAPIClient(api_key=api_key)
        self._sender = Email(sender_email, sender_name)

    def _send_sync(self, to: str, subject: str, html_body: str, text_body: str) -> int:
        mail = Mail(
            from_email=self._sender,
            to_emails=To(to),
            subject=subject,
            html_content=Content("text/html", html_body),
        )
        mail.add_content(Content("text/plain", text_body))
        response = self._client.send(mail)
        return int(response.status_code)

    async def send(self, *, to: str, subject: str, html: str, text: str) -> None:
        status = await asyncio.to_thread(self._send_sync, to, subject, html, text)
        if status not in (200, 201, 202):
            raise NotificationError(f"Email failed: {status}")
        logger.info("Email sent to=%s subject=%r", to, subject)
