"""
Compliance Cloud - Admin Jobs Router

API endpoints for triggering background jobs and managing the job queues.

Features:
- Trigger compliance refresh, expiry check and filing reminder runs
- Queue counts, pause/resume and cleanup
- Job status and progress
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from compliance_cloud.dependencies import get_queue_registry, require_admin_token
from compliance_cloud.queue.registry import QueueRegistry
from compliance_cloud.schemas.jobs import (
    CleanQueueRequest,
    JobName,
    JobResponse,
    QueueCounts,
    TriggerJobRequest,
    TriggerSource,
)
from compliance_cloud.utils.error_handling import ErrorCode, NotFoundError


router = APIRouter(
    prefix="/admin",
    tags=["Admin Jobs"],
    dependencies=[Depends(require_admin_token)],
)


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class CleanQueueResponse(BaseModel):
    queue: str
    removed: int
    job_ids: List[str]


class MessageResponse(BaseModel):
    """Generic message response."""
    message: str
    success: bool = True


# ===========================================
# JOB TRIGGERS
# ===========================================

@router.post("/jobs/{job_name}", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
def trigger_job(
    job_name: str,
    request: Optional[TriggerJobRequest] = None,
    registry: QueueRegistry = Depends(get_queue_registry),
):
    """
    Run a batch job now.

    ``job_name`` is one of ``compliance-refresh``, ``expiry-check`` or
    ``filing-reminder-check``. Without a ``tenant_id`` every active tenant
    is processed.
    """
    request = request or TriggerJobRequest()
    enqueue = {
        JobName.COMPLIANCE_REFRESH: registry.enqueue_compliance_refresh,
        JobName.EXPIRY_CHECK: registry.enqueue_expiry_check,
        JobName.FILING_REMINDER_CHECK: registry.enqueue_filing_reminder,
    }.get(job_name)
    if enqueue is None:
        raise NotFoundError("Job type", job_name, code=ErrorCode.NOT_FOUND)

    return enqueue(
        tenant_id=request.tenant_id,
        triggered_by=TriggerSource.MANUAL,
        priority=request.priority,
        delay=request.delay_seconds,
    )


# ===========================================
# QUEUE ADMINISTRATION
# ===========================================

@router.get("/queues", response_model=Dict[str, QueueCounts])
def list_queues(registry: QueueRegistry = Depends(get_queue_registry)):
    """Job counts by status for every queue."""
    return {
        name: QueueCounts(**counts)
        for name, counts in registry.get_all_counts().items()
    }


@router.post("/queues/{queue_name}/pause", response_model=MessageResponse)
def pause_queue(queue_name: str, registry: QueueRegistry = Depends(get_queue_registry)):
    workers = registry.pause_queue(queue_name)
    return MessageResponse(message=f"Queue '{queue_name}' paused on {len(workers)} worker(s)")


@router.post("/queues/{queue_name}/resume", response_model=MessageResponse)
def resume_queue(queue_name: str, registry: QueueRegistry = Depends(get_queue_registry)):
    workers = registry.resume_queue(queue_name)
    return MessageResponse(message=f"Queue '{queue_name}' resumed on {len(workers)} worker(s)")


@router.post("/queues/{queue_name}/clean", response_model=CleanQueueResponse)
def clean_queue(
    queue_name: str,
    request: Optional[CleanQueueRequest] = None,
    registry: QueueRegistry = Depends(get_queue_registry),
):
    """Remove completed or failed jobs older than ``age_seconds``."""
    request = request or CleanQueueRequest()
    removed = registry.clean_queue(
        queue_name,
        age_seconds=request.age_seconds,
        limit=request.limit,
        status=request.status,
    )
    return CleanQueueResponse(queue=queue_name, removed=len(removed), job_ids=removed)


@router.get("/queues/{queue_name}/jobs/{job_id}", response_model=JobResponse)
def get_job(
    queue_name: str,
    job_id: str,
    registry: QueueRegistry = Depends(get_queue_registry),
):
    """Status, progress and result of one job."""
    return registry.get_job(queue_name, job_id)
