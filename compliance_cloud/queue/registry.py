"""
Compliance Cloud - Queue Registry

Producer and admin operations over the Celery queues, used by the admin
endpoints. Jobs live in the Redis broker and their state in the result
backend; the registry keeps nothing in process.

Status mapping:
    QUEUED (stored on enqueue)   -> waiting, or delayed while run_at is ahead
    RECEIVED                     -> waiting
    STARTED, PROGRESS            -> active
    RETRY                        -> delayed
    SUCCESS                      -> completed
    FAILURE, REVOKED             -> failed
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

from celery import Celery, states
from celery.result import AsyncResult
from kombu.exceptions import OperationalError
from redis.exceptions import RedisError

from compliance_cloud.config import Settings, settings as default_settings
from compliance_cloud.schemas.jobs import BatchJobPayload, JobName, JobResponse, JobStatus, QueueName, TriggerSource
from compliance_cloud.schemas.notification import EmailJob
from compliance_cloud.utils.dates import as_utc, utcnow
from compliance_cloud.utils.error_handling import (
    ErrorCode,
    NotFoundError,
    QueueUnavailableError,
    ValidationException,
)

logger = logging.getLogger(__name__)


# Result state written before the message is published
QUEUED = "QUEUED"
PROGRESS = "PROGRESS"

TASK_PREFIX = "compliance_cloud.tasks.celery_tasks"

# Job name -> (Celery task, queue)
JOB_TASKS: Dict[str, Tuple[str, str]] = {
    JobName.COMPLIANCE_REFRESH: (f"{TASK_PREFIX}.compliance_refresh_task", QueueName.COMPLIANCE),
    JobName.NOTIFICATION_CLEANUP: (f"{TASK_PREFIX}.cleanup_notifications_task", QueueName.COMPLIANCE),
    JobName.EXPIRY_CHECK: (f"{TASK_PREFIX}.expiry_check_task", QueueName.EXPIRY_NOTIFICATION),
    JobName.FILING_REMINDER_CHECK: (f"{TASK_PREFIX}.filing_reminder_check_task", QueueName.FILING_REMINDER),
    JobName.SEND_EMAIL: (f"{TASK_PREFIX}.send_email_task", QueueName.EMAIL),
}
JOB_BY_TASK = {task: job for job, (task, _) in JOB_TASKS.items()}

QUEUES = (
    QueueName.COMPLIANCE,
    QueueName.EXPIRY_NOTIFICATION,
    QueueName.FILING_REMINDER,
    QueueName.EMAIL,
)

STATUS_BY_STATE = {
    states.RECEIVED: JobStatus.WAITING,
    states.STARTED: JobStatus.ACTIVE,
    PROGRESS: JobStatus.ACTIVE,
    states.RETRY: JobStatus.DELAYED,
    states.SUCCESS: JobStatus.COMPLETED,
    states.FAILURE: JobStatus.FAILED,
    states.REVOKED: JobStatus.FAILED,
}

PAUSE_KEY_PREFIX = "compliance-cloud:paused:"


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))


def _routing_key(request: Dict[str, Any]) -> Optional[str]:
    return (request.get("delivery_info") or {}).get("routing_key")


class QueueRegistry:
    """
    The ``compliance``, ``expiry-notification``, ``filing-reminder`` and
    ``email`` queues, seen through a Celery app.
    """

    def __init__(self, app: Celery, config: Settings = default_settings):
        self.app = app
        self.config = config
        self.max_attempts = {
            QueueName.COMPLIANCE: config.compliance_queue_attempts,
            QueueName.EXPIRY_NOTIFICATION: config.reminder_queue_attempts,
            QueueName.FILING_REMINDER: config.reminder_queue_attempts,
            QueueName.EMAIL: config.email_queue_attempts,
        }

    def close(self) -> None:
        self.app.close()

    @contextmanager
    def _broker(self, operation: str):
        try:
            yield
        except (OperationalError, RedisError, ConnectionError) as e:
            logger.error(f"Job queue unavailable during {operation}: {e}")
            raise QueueUnavailableError(operation, original_error=e)

    # ===========================================
    # PRODUCERS
    # ===========================================

    def enqueue(
        self,
        job_name: str,
        data: Dict[str, Any],
        priority: Optional[int] = None,
        delay: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> JobResponse:
        """
        Publish a job on its queue.

        A ``job_id`` that already names a waiting, delayed or active job
        returns that job instead of publishing a second one.
        """
        if job_name not in JOB_TASKS:
            raise ValidationException(f"Unknown job '{job_name}'")
        task_name, queue_name = JOB_TASKS[job_name]

        with self._broker(f"enqueue {job_name}"):
            if job_id is not None:
                existing = self._describe(self.app.AsyncResult(job_id))
                if existing is not None and existing.status not in JobStatus.TERMINAL:
                    logger.info(f"Job {job_id} already {existing.status} on {existing.queue}; not re-added")
                    return existing

            job_id = job_id or str(uuid.uuid4())
            created_at = utcnow()
            run_at = created_at + timedelta(seconds=delay) if delay else None
            self.app.backend.store_result(job_id, {
                "name": job_name,
                "queue": queue_name,
                "data": data,
                "priority": priority,
                "created_at": created_at.isoformat(),
                "run_at": run_at.isoformat() if run_at else None,
            }, QUEUED)

            options: Dict[str, Any] = {"queue": queue_name}
            if priority is not None:
                options["priority"] = priority
            if delay:
                options["countdown"] = delay
            try:
                self.app.send_task(task_name, kwargs=data, task_id=job_id, **options)
            except Exception:
                self.app.AsyncResult(job_id).forget()
                raise

        logger.info(f"Enqueued {job_name} job {job_id} on {queue_name}")
        return JobResponse(
            id=job_id,
            name=job_name,
            queue=queue_name,
            data=data,
            status=JobStatus.DELAYED if run_at else JobStatus.WAITING,
            priority=priority,
            max_attempts=self.max_attempts[queue_name],
            created_at=created_at,
            run_at=run_at,
        )

    def _enqueue_batch(
        self,
        job_name: str,
        tenant_id: Optional[uuid.UUID],
        triggered_by: str,
        priority: Optional[int],
        delay: Optional[float],
        job_id: Optional[str],
    ) -> JobResponse:
        payload = BatchJobPayload(tenant_id=tenant_id, triggered_by=triggered_by)
        return self.enqueue(
            job_name, payload.model_dump(mode="json"), priority=priority, delay=delay, job_id=job_id,
        )

    def enqueue_compliance_refresh(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        triggered_by: str = TriggerSource.MANUAL,
        priority: Optional[int] = None,
        delay: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> JobResponse:
        return self._enqueue_batch(JobName.COMPLIANCE_REFRESH, tenant_id, triggered_by, priority, delay, job_id)

    def enqueue_expiry_check(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        triggered_by: str = TriggerSource.MANUAL,
        priority: Optional[int] = None,
        delay: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> JobResponse:
        return self._enqueue_batch(JobName.EXPIRY_CHECK, tenant_id, triggered_by, priority, delay, job_id)

    def enqueue_filing_reminder(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        triggered_by: str = TriggerSource.MANUAL,
        priority: Optional[int] = None,
        delay: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> JobResponse:
        return self._enqueue_batch(JobName.FILING_REMINDER_CHECK, tenant_id, triggered_by, priority, delay, job_id)

    def enqueue_notification_cleanup(
        self,
        days_old: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> JobResponse:
        data = {} if days_old is None else {"days_old": days_old}
        return self.enqueue(JobName.NOTIFICATION_CLEANUP, data, job_id=job_id)

    def enqueue_email(self, email_job: EmailJob) -> JobResponse:
        return self.enqueue(JobName.SEND_EMAIL, {"email_job": email_job.model_dump(mode="json")})

    # ===========================================
    # JOB STATUS
    # ===========================================

    def _describe(self, result: AsyncResult) -> Optional[JobResponse]:
        state = result.state
        if state == states.PENDING:
            return None

        if state == QUEUED:
            info = result.info or {}
            run_at = _parse_time(info.get("run_at"))
            queue_name = info.get("queue", "")
            return JobResponse(
                id=result.id,
                name=info.get("name", ""),
                queue=queue_name,
                data=info.get("data") or {},
                status=JobStatus.DELAYED if run_at and run_at > utcnow() else JobStatus.WAITING,
                priority=info.get("priority"),
                max_attempts=self.max_attempts.get(queue_name, 1),
                created_at=_parse_time(info.get("created_at")),
                run_at=run_at,
            )

        job_name = JOB_BY_TASK.get(result.name, result.name or "")
        queue_name = result.queue or JOB_TASKS.get(job_name, ("", ""))[1]
        job_status = STATUS_BY_STATE.get(state, JobStatus.ACTIVE)
        ready = state in states.READY_STATES
        return JobResponse(
            id=result.id,
            name=job_name,
            queue=queue_name,
            data=result.kwargs or {},
            status=job_status,
            attempts_made=(result.retries or 0) + (1 if ready else 0),
            max_attempts=self.max_attempts.get(queue_name, 1),
            progress=result.info if state == PROGRESS else None,
            result=result.result if state == states.SUCCESS else None,
            failed_reason=str(result.info) if state in states.EXCEPTION_STATES else None,
            finished_at=_parse_time(result.date_done) if ready else None,
        )

    def get_job(self, queue_name: str, job_id: str) -> JobResponse:
        self._require_queue(queue_name)
        with self._broker("get job"):
            job = self._describe(self.app.AsyncResult(job_id))
        if job is None or job.queue != queue_name:
            raise NotFoundError("Job", job_id, code=ErrorCode.JOB_NOT_FOUND)
        return job

    # ===========================================
    # ADMINISTRATION
    # ===========================================

    def _require_queue(self, name: str) -> None:
        if name not in QUEUES:
            raise NotFoundError("Queue", name, code=ErrorCode.QUEUE_NOT_FOUND)

    def _pause_key(self, name: str) -> str:
        return f"{PAUSE_KEY_PREFIX}{name}"

    def is_paused(self, name: str) -> bool:
        self._require_queue(name)
        with self._broker("pause lookup"):
            return bool(self.app.backend.client.exists(self._pause_key(name)))

    def _consumers(self, name: str) -> List[str]:
        inspect = self.app.control.inspect(timeout=self.config.queue_inspect_timeout_seconds)
        return sorted(
            worker
            for worker, queues in (inspect.active_queues() or {}).items()
            if any(q.get("name") == name for q in queues)
        )

    def pause_queue(self, name: str) -> List[str]:
        """Stop the workers currently consuming ``name``. Returns those workers."""
        self._require_queue(name)
        client = self.app.backend.client
        with self._broker("pause"):
            workers = set(self._consumers(name))
            previous = client.get(self._pause_key(name))
            if previous is not None:
                workers.update(json.loads(previous))
            if workers:
                self.app.control.cancel_consumer(name, destination=sorted(workers), reply=True)
            client.set(self._pause_key(name), json.dumps(sorted(workers)))
        logger.info(f"Paused queue {name} on {len(workers)} worker(s)")
        return sorted(workers)

    def resume_queue(self, name: str) -> List[str]:
        """Restart consumption on the workers that :meth:`pause_queue` stopped."""
        self._require_queue(name)
        client = self.app.backend.client
        with self._broker("resume"):
            stored = client.get(self._pause_key(name))
            if stored is None:
                logger.info(f"Queue {name} is not paused")
                return []
            workers = json.loads(stored)
            if workers:
                self.app.control.add_consumer(name, destination=workers, reply=True)
            client.delete(self._pause_key(name))
        logger.info(f"Resumed queue {name} on {len(workers)} worker(s)")
        return workers

    def _broker_length(self, name: str) -> int:
        with self.app.connection_for_read() as conn:
            declared = conn.default_channel.queue_declare(queue=name, durable=True, auto_delete=False)
            return declared.message_count

    def _iter_results(self) -> Iterator[Dict[str, Any]]:
        backend = self.app.backend
        for key in backend.client.scan_iter(match=backend.get_key_for_task("*")):
            raw = backend.client.get(key)
            # expired between scan and get
            if raw is None:
                continue
            yield backend.decode_result(raw)

    @staticmethod
    def _result_queue(meta: Dict[str, Any]) -> Optional[str]:
        if meta.get("queue"):
            return meta["queue"]
        if meta.get("status") == QUEUED and isinstance(meta.get("result"), dict):
            return meta["result"].get("queue")
        job_name = JOB_BY_TASK.get(meta.get("name"))
        return JOB_TASKS[job_name][1] if job_name else None

    def get_all_counts(self) -> Dict[str, Dict[str, int]]:
        """
        Job counts by status for every queue.

        ``waiting`` is the broker backlog plus messages reserved by workers;
        the backlog of a paused queue is reported as ``paused``.
        """
        counts = {
            name: {s: 0 for s in ("waiting", "active", "completed", "failed", "delayed", "paused")}
            for name in QUEUES
        }

        def bump(queue_name: Optional[str], key: str) -> None:
            if queue_name in counts:
                counts[queue_name][key] += 1

        with self._broker("queue counts"):
            inspect = self.app.control.inspect(timeout=self.config.queue_inspect_timeout_seconds)
            for key, listing in (("active", inspect.active()), ("waiting", inspect.reserved())):
                for requests in (listing or {}).values():
                    for request in requests:
                        bump(_routing_key(request), key)
            for entries in (inspect.scheduled() or {}).values():
                for entry in entries:
                    bump(_routing_key(entry.get("request") or {}), "delayed")

            for name in QUEUES:
                backlog_key = "paused" if self.is_paused(name) else "waiting"
                counts[name][backlog_key] += self._broker_length(name)

            for meta in self._iter_results():
                job_status = STATUS_BY_STATE.get(meta.get("status"))
                if job_status in JobStatus.TERMINAL:
                    bump(self._result_queue(meta), job_status)

        return counts

    def clean_queue(
        self,
        name: str,
        age_seconds: float,
        limit: int = 1000,
        status: str = JobStatus.COMPLETED,
    ) -> List[str]:
        """Forget up to ``limit`` completed or failed results older than ``age_seconds``."""
        self._require_queue(name)
        if status not in JobStatus.TERMINAL:
            raise ValidationException(f"Can only clean completed or failed jobs, not '{status}'", field="status")

        cutoff = utcnow() - timedelta(seconds=age_seconds)
        removed: List[str] = []
        with self._broker("clean"):
            for meta in self._iter_results():
                if len(removed) >= limit:
                    break
                if STATUS_BY_STATE.get(meta.get("status")) != status or self._result_queue(meta) != name:
                    continue
                finished = _parse_time(meta.get("date_done"))
                if finished is None or finished > cutoff:
                    continue
                self.app.AsyncResult(meta["task_id"]).forget()
                removed.append(meta["task_id"])

        logger.info(f"Cleaned {len(removed)} {status} job(s) from {name}")
        return removed
