"""
Compliance Cloud - Email Service

Renders reminder emails from their template name and sends them.
Supports SendGrid or SMTP, with a logging mock for development.
"""

import asyncio
import html
import logging
import smtplib
import ssl
import uuid
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import httpx

from compliance_cloud.config import settings
from compliance_cloud.schemas.notification import EmailTemplate

logger = logging.getLogger(__name__)

SIGNATURE = "---\nCompliance Cloud\nAutomated Notification System"


class EmailProvider:
    """Email provider types."""
    SMTP = "smtp"
    SENDGRID = "sendgrid"
    MOCK = "mock"


class EmailDeliveryError(Exception):
    """Provider refused or failed to accept a message."""


@dataclass
class EmailMessage:
    """Email message data structure."""
    to: List[str]
    subject: str
    body_text: str
    body_html: Optional[str] = None
    reply_to: Optional[str] = None


@dataclass
class EmailSendResult:
    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None


# ===========================================
# TEMPLATES
# ===========================================

def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%Y-%m-%d")
        except ValueError:
            return value
    return "N/A"


def _bullets(items: Optional[List[str]], empty: str) -> str:
    if not items:
        return empty
    return "\n".join(f"- {item}" for item in items)


def render_email(template: str, data: Dict[str, Any]) -> str:
    """Plain-text body for a template; unknown templates use the default."""
    name = data.get("recipient_name") or "User"

    if template == EmailTemplate.DOCUMENT_EXPIRY:
        body = (
            "This is a reminder that a document is expiring soon:\n\n"
            f"Document: {data.get('document_title')}\n"
            f"Client: {data.get('client_name')}\n"
            f"Expiry Date: {_format_date(data.get('due_date'))}\n"
            f"Days Until Expiry: {data.get('days_until_due')}\n"
            f"Urgency: {str(data.get('urgency_level', '')).upper()}\n\n"
            "Please take appropriate action to renew this document before it expires."
        )
    elif template == EmailTemplate.FILING_REMINDER:
        body = (
            "This is a reminder that a filing deadline is approaching:\n\n"
            f"Filing Type: {data.get('filing_type')}\n"
            f"Client: {data.get('client_name')}\n"
            f"Period: {data.get('period_label') or 'N/A'}\n"
            f"Due Date: {_format_date(data.get('due_date'))}\n"
            f"Days Until Due: {data.get('days_until_due')}\n"
            f"Current Status: {data.get('filing_status')}\n"
            f"Urgency: {str(data.get('urgency_level', '')).upper()}\n\n"
            "Please ensure this filing is completed and submitted before the deadline."
        )
    elif template == EmailTemplate.COMPLIANCE_ALERT:
        body = (
            "Compliance Alert:\n\n"
            f"Client: {data.get('client_name')}\n"
            f"Compliance Score: {data.get('compliance_score')}%\n"
            f"Compliance Level: {str(data.get('compliance_level', '')).upper()}\n\n"
            f"Issues:\n{_bullets(data.get('issues'), 'No issues listed')}\n\n"
            f"Recommendations:\n{_bullets(data.get('recommendations'), 'No recommendations listed')}\n\n"
            "Please review and take necessary action."
        )
    else:
        body = data.get("message") or f"You have a new notification from {settings.app_name}."

    return f"Dear {name},\n\n{body}\n\n{SIGNATURE}"


def render_email_html(body_text: str) -> str:
    paragraphs = "".join(
        f"<p>{html.escape(chunk).replace(chr(10), '<br>')}</p>" for chunk in body_text.split("\n\n")
    )
    return (
        '<html><body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">'
        f'<div style="max-width: 600px; margin: 0 auto; padding: 20px;">{paragraphs}</div>'
        "</body></html>"
    )


# ===========================================
# SENDING
# ===========================================

class EmailService:
    """Service for sending transactional emails."""

    def __init__(self, provider: Optional[str] = None):
        self.from_email = settings.email_from
        self.from_name = settings.mail_from_name

        # SMTP settings
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.mail_port
        self.smtp_username = settings.mail_username
        self.smtp_password = settings.mail_password
        self.smtp_use_tls = settings.mail_use_tls

        # SendGrid settings
        self.sendgrid_api_key = settings.sendgrid_api_key

        self.provider = provider or self._determine_provider()

    def _determine_provider(self) -> str:
        """Determine which email provider to use based on configuration."""
        if self.sendgrid_api_key:
            return EmailProvider.SENDGRID
        elif self.smtp_host:
            return EmailProvider.SMTP
        else:
            return EmailProvider.MOCK

    async def send_email(self, message: EmailMessage) -> EmailSendResult:
        """
        Send an email using the configured provider.

        Provider failures are logged and returned, never raised.
        """
        try:
            if self.provider == EmailProvider.SENDGRID:
                message_id = await self._send_via_sendgrid(message)
            elif self.provider == EmailProvider.SMTP:
                message_id = await self._send_via_smtp(message)
            else:
                message_id = await self._send_mock(message)
        except (EmailDeliveryError, httpx.HTTPError, smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email via {self.provider} to {message.to}: {e}")
            return EmailSendResult(success=False, provider=self.provider, error=str(e) or type(e).__name__)

        return EmailSendResult(success=True, provider=self.provider, message_id=message_id)

    async def _send_via_sendgrid(self, message: EmailMessage) -> Optional[str]:
        """Send email via SendGrid API."""
        payload = {
            "personalizations": [
                {
                    "to": [{"email": email} for email in message.to],
                }
            ],
            "from": {
                "email": self.from_email,
                "name": self.from_name,
            },
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.body_text},
            ],
        }

        if message.body_html:
            payload["content"].append({
                "type": "text/html",
                "value": message.body_html,
            })

        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}

        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                "https://api.sendgrid.com/v3/mail/send",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.sendgrid_api_key}",
                    "Content-Type": "application/json",
                },
            )

        if response.status_code not in (200, 202):
            raise EmailDeliveryError(f"SendGrid API error: {response.status_code} - {response.text}")

        logger.info(f"Email sent via SendGrid to {message.to}")
        return response.headers.get("X-Message-Id")

    def _smtp_send(self, message: EmailMessage) -> str:
        msg = MIMEMultipart("alternative")
        message_id = f"<{uuid.uuid4()}@{self.from_email.split('@')[-1]}>"
        msg["Subject"] = message.subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = ", ".join(message.to)
        msg["Message-ID"] = message_id
        if message.reply_to:
            msg["Reply-To"] = message.reply_to

        msg.attach(MIMEText(message.body_text, "plain"))
        if message.body_html:
            msg.attach(MIMEText(message.body_html, "html"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            if self.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_username and self.smtp_password:
                server.login(self.smtp_username, self.smtp_password)
            server.sendmail(self.from_email, message.to, msg.as_string())
        return message_id

    async def _send_via_smtp(self, message: EmailMessage) -> str:
        """Send email via SMTP without blocking the event loop."""
        message_id = await asyncio.to_thread(self._smtp_send, message)
        logger.info(f"Email sent via SMTP to {message.to}")
        return message_id

    async def _send_mock(self, message: EmailMessage) -> str:
        """Mock email sending for development."""
        logger.info(f"[MOCK EMAIL] To: {message.to} | Subject: {message.subject}")
        logger.debug(f"[MOCK EMAIL] Body: {message.body_text[:200]}...")
        return f"mock-{uuid.uuid4().hex[:12]}"
