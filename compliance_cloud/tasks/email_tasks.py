"""
Compliance Cloud - Email Delivery Job

Renders and sends one ``send-email`` job, then records the outcome on the
correlated notification.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from compliance_cloud.database import async_session_maker
from compliance_cloud.schemas.notification import EmailJob, EmailJobResult
from compliance_cloud.services.email_service import (
    EmailDeliveryError,
    EmailMessage,
    EmailService,
    render_email,
    render_email_html,
)
from compliance_cloud.services.notification_service import NotificationService
from compliance_cloud.tasks.common import transient_io
from compliance_cloud.utils.dates import utcnow

logger = logging.getLogger(__name__)


async def run_send_email(
    email_job: EmailJob,
    email_service: Optional[EmailService] = None,
    session_factory: async_sessionmaker = async_session_maker,
    raise_on_failure: bool = True,
) -> EmailJobResult:
    """
    Deliver one email and mark its notification sent or failed.

    A failed delivery raises ``EmailDeliveryError`` afterwards (unless
    ``raise_on_failure`` is off) so the queue retries it.
    """
    email_service = email_service or EmailService()
    body_text = render_email(email_job.template, {**email_job.data, "recipient_name": email_job.recipient_name})

    logger.info(
        f"Sending '{email_job.template}' email to {email_job.recipient_email} "
        f"(tenant {email_job.tenant_id}, notification {email_job.notification_id})"
    )
    sent = await email_service.send_email(EmailMessage(
        to=[email_job.recipient_email],
        subject=email_job.subject,
        body_text=body_text,
        body_html=render_email_html(body_text),
    ))

    if email_job.notification_id is not None:
        async with transient_io("send-email"):
            async with session_factory() as db:
                found = await NotificationService(db).record_email_result(
                    email_job.notification_id,
                    success=sent.success,
                    error=sent.error,
                )
        if not found:
            logger.warning(
                f"Notification {email_job.notification_id} no longer exists; email outcome not recorded"
            )

    if not sent.success and raise_on_failure:
        raise EmailDeliveryError(sent.error or "email delivery failed")

    return EmailJobResult(
        success=sent.success,
        notification_id=email_job.notification_id,
        error=sent.error,
        timestamp=utcnow(),
    )
