"""Job and task state machines.

Every helper mutates the record in place and returns it, the way the stores
expect to receive a record plus the etag it was read with.
"""

from datetime import datetime, timezone
from typing import Optional

from bulkgrant.errors import BulkGrantError, InvalidTransitionError

from .models import (
    JOB_TERMINAL_STATES,
    Job,
    JobStatus,
    Task,
    TaskAction,
    TaskStatus,
)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def start_job(job: Job, now: Optional[str] = None) -> Job:
    if job.status != JobStatus.PENDING:
        raise InvalidTransitionError("job", job.status, JobStatus.PROCESSING)
    now = now or now_iso()
    job.status = JobStatus.PROCESSING
    job.started_at = now
    job.updated_at = now
    return job


def apply_batch_counts(job: Job, succeeded: int, failed: int, now: Optional[str] = None) -> Job:
    if job.status != JobStatus.PROCESSING:
        raise InvalidTransitionError("job", job.status, JobStatus.PROCESSING)
    settled = succeeded + failed
    if job.completed_count + settled > job.total_units:
        raise BulkGrantError(
            f"job {job.job_id} would complete {job.completed_count + settled} of {job.total_units} units"
        )
    job.completed_count += settled
    job.success_count += succeeded
    job.failed_count += failed
    job.updated_at = now or now_iso()
    return job


def terminal_status(total_units: int, success_count: int, failed_count: int) -> str:
    if failed_count == 0:
        return JobStatus.COMPLETED
    if success_count == 0 and failed_count == total_units:
        return JobStatus.FAILED
    return JobStatus.PARTIAL_SUCCESS


def finish_job(job: Job, now: Optional[str] = None) -> Job:
    if job.status != JobStatus.PROCESSING:
        raise InvalidTransitionError("job", job.status, "terminal")
    if job.completed_count != job.total_units:
        raise BulkGrantError(
            f"job {job.job_id} has {job.total_units - job.completed_count} unsettled units"
        )
    now = now or now_iso()
    job.status = terminal_status(job.total_units, job.success_count, job.failed_count)
    job.completed_at = now
    job.updated_at = now
    return job


def abort_job(job: Job, message: str, now: Optional[str] = None) -> Job:
    if job.status != JobStatus.PROCESSING:
        raise InvalidTransitionError("job", job.status, JobStatus.FAILED)
    now = now or now_iso()
    job.status = JobStatus.FAILED
    job.error_message = message
    job.completed_at = now
    job.updated_at = now
    return job


def cancel_job(job: Job, now: Optional[str] = None) -> Job:
    if job.status in JOB_TERMINAL_STATES:
        raise InvalidTransitionError("job", job.status, JobStatus.CANCELLED)
    now = now or now_iso()
    job.status = JobStatus.CANCELLED
    job.completed_at = now
    job.updated_at = now
    return job


def start_task(task: Task, now: Optional[str] = None) -> Task:
    if task.status != TaskStatus.PENDING:
        raise InvalidTransitionError("task", task.status, TaskStatus.PROCESSING)
    now = now or now_iso()
    task.status = TaskStatus.PROCESSING
    task.started_at = now
    task.updated_at = now
    return task


def _settle_task(task: Task, status: str, duration_ms: int, now: Optional[str]) -> Task:
    if task.status != TaskStatus.PROCESSING:
        raise InvalidTransitionError("task", task.status, status)
    now = now or now_iso()
    task.status = status
    task.completed_at = now
    task.updated_at = now
    task.duration_ms = duration_ms
    return task


def succeed_task(
    task: Task,
    action: str,
    previous_role: Optional[str],
    request_id: Optional[str],
    duration_ms: int,
    now: Optional[str] = None,
) -> Task:
    status = TaskStatus.SKIPPED if action == TaskAction.SKIPPED else TaskStatus.SUCCESS
    _settle_task(task, status, duration_ms, now)
    task.action_taken = action
    task.previous_role = previous_role
    task.request_id = request_id
    return task


def fail_task(
    task: Task,
    error_code: Optional[str],
    error_message: str,
    status_code: Optional[int],
    request_id: Optional[str],
    duration_ms: int,
    now: Optional[str] = None,
) -> Task:
    _settle_task(task, TaskStatus.FAILED, duration_ms, now)
    task.error_code = error_code
    task.error_message = error_message
    task.status_code = status_code
    task.request_id = request_id
    return task
