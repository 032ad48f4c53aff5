"""
Compliance Cloud - Background Jobs

Job bodies run by the Celery tasks in ``celery_tasks``.
"""

from compliance_cloud.tasks.compliance_tasks import run_compliance_refresh
from compliance_cloud.tasks.email_tasks import run_send_email
from compliance_cloud.tasks.maintenance_tasks import run_notification_cleanup
from compliance_cloud.tasks.reminder_tasks import run_reminder_check

__all__ = [
    "run_compliance_refresh",
    "run_send_email",
    "run_notification_cleanup",
    "run_reminder_check",
]
