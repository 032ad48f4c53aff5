"""
Compliance Cloud - Job Schemas

Payloads and run summaries of the scheduled jobs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobName:
    """Job names accepted by the admin API."""
    COMPLIANCE_REFRESH = "compliance-refresh"
    EXPIRY_CHECK = "expiry-check"
    FILING_REMINDER_CHECK = "filing-reminder-check"
    SEND_EMAIL = "send-email"
    NOTIFICATION_CLEANUP = "notification-cleanup"


class QueueName:
    """Queue names."""
    COMPLIANCE = "compliance"
    EXPIRY_NOTIFICATION = "expiry-notification"
    FILING_REMINDER = "filing-reminder"
    EMAIL = "email"


class TriggerSource:
    CRON = "cron"
    MANUAL = "manual"


class JobStatus:
    """Job status as reported by the admin API."""
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})


# ===========================================
# PAYLOADS
# ===========================================

class BatchJobPayload(BaseModel):
    """``{tenant_id?, triggered_by}``; no tenant means every active tenant."""
    model_config = ConfigDict(frozen=True)

    tenant_id: Optional[UUID] = None
    triggered_by: str = TriggerSource.CRON


class TriggerJobRequest(BaseModel):
    """Admin request to run a job now."""
    tenant_id: Optional[UUID] = None
    # Redis priority steps 0-9, lower runs first
    priority: Optional[int] = Field(None, ge=1, le=9)
    delay_seconds: Optional[float] = Field(None, ge=0)


class CleanQueueRequest(BaseModel):
    """Admin request to evict old terminal jobs."""
    age_seconds: int = Field(24 * 3600, ge=0)
    limit: int = Field(1000, ge=1)
    status: str = Field("completed", pattern="^(completed|failed)$")


# ===========================================
# RUN SUMMARIES
# ===========================================

class BatchRunResult(BaseModel):
    """Fields common to every multi-tenant run."""
    tenants_processed: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    duration_ms: int = 0


class ComplianceRefreshResult(BatchRunResult):
    clients_updated: int = 0
    clients_failed: int = 0


class ReminderRunResult(BatchRunResult):
    entities_checked: int = 0
    notifications_created: int = 0
    emails_queued: int = 0
    urgent_flagged: int = 0
    skipped_already_notified: int = 0


class CleanupResult(BaseModel):
    notifications_deleted: int = 0


# ===========================================
# ADMIN RESPONSES
# ===========================================

class JobResponse(BaseModel):
    """Snapshot of a queued job."""
    id: str
    name: str
    queue: str
    data: Dict[str, Any]
    status: str
    priority: Optional[int] = None
    attempts_made: int = 0
    max_attempts: int
    progress: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None
    failed_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    run_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class QueueCounts(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: int = 0
