import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from bulkgrant.config.settings import AppSettings
from bulkgrant.errors import JobAbortedError, JobNotFoundError
from bulkgrant.ledger.interfaces import CancellationStore, JobsStore, TasksStore
from bulkgrant.ledger.models import Job, JobStatus, Task, TaskAction, TaskStatus
from bulkgrant.ledger.transitions import (
    abort_job,
    apply_batch_counts,
    cancel_job,
    fail_task,
    finish_job,
    now_iso,
    start_job,
    start_task,
    succeed_task,
)
from bulkgrant.remote.client import EnsureResult, ProjectMember
from bulkgrant.remote.errors import UNEXPECTED_ERROR, MembershipError
from bulkgrant.shared.logging import get_logger, log_event

from .outcomes import BatchResult, TaskFailed, TaskOutcome, TaskSkipped, TaskSucceeded, chunk
from .progress import calculate_percentage


ProgressCallback = Callable[[int], Any]
SHUTDOWN_MESSAGE = "worker shutdown"


class MembershipAPI(Protocol):
    async def get_project_name(self, credential: str, project_id: str) -> str:
        ...

    async def ensure_role(self, credential: str, project_id: str, email: str, role: str) -> EnsureResult:
        ...

    async def list_members(self, credential: str, project_id: str) -> List[ProjectMember]:
        ...


@dataclass
class SchedulerConfig:
    batch_size: int = 5
    batch_delay_seconds: float = 0.5

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SchedulerConfig":
        return cls(batch_size=settings.batch_size, batch_delay_seconds=settings.batch_delay_seconds)


class BatchScheduler:
    """Runs one bulk-assignment job to a terminal status.

    Tasks of a batch run concurrently and each persists its own row; the job
    row is written once per batch, after every task of that batch has settled.
    """

    def __init__(
        self,
        jobs_store: JobsStore,
        tasks_store: TasksStore,
        cancellations: CancellationStore,
        client: MembershipAPI,
        config: Optional[SchedulerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs_store = jobs_store
        self._tasks_store = tasks_store
        self._cancellations = cancellations
        self._client = client
        self._config = config or SchedulerConfig()
        self._sleep = sleep
        self._clock = clock
        self._logger = get_logger("bulkgrant.scheduler")

    async def process(
        self, job_id: str, credential: str, report_progress: Optional[ProgressCallback] = None
    ) -> Job:
        job = self._jobs_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PENDING:
            log_event(self._logger, "job.not_pending", job_id=job_id, status=job.status)
            return job

        job = self._jobs_store.update_job(start_job(job), job.etag or "")
        log_event(
            self._logger,
            "job.started",
            job_id=job_id,
            total_units=job.total_units,
            user_count=len(job.user_emails),
            project_count=len(job.project_ids),
        )
        try:
            return await self._run(job, credential, report_progress)
        except asyncio.CancelledError:
            # Forced shutdown: the job must not stay processing with no worker behind it.
            log_event(self._logger, "job.interrupted", level=logging.ERROR, job_id=job_id)
            self._abort(job_id, SHUTDOWN_MESSAGE)
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log_event(self._logger, "job.aborted", level=logging.ERROR, job_id=job_id, error=message)
            self._abort(job_id, message)
            raise JobAbortedError(job_id, message) from exc

    async def _run(self, job: Job, credential: str, report_progress: Optional[ProgressCallback]) -> Job:
        names = await self._resolve_project_names(credential, job.project_ids)
        tasks = self._tasks_store.create_tasks(job.job_id, self._build_tasks(job, names))
        log_event(self._logger, "tasks.created", job_id=job.job_id, count=len(tasks))

        batches = chunk(tasks, self._config.batch_size)
        for index, batch in enumerate(batches):
            if self._cancellations.is_requested(job.job_id):
                job = self._jobs_store.update_job(cancel_job(job), job.etag or "")
                self._cancellations.clear(job.job_id)
                log_event(
                    self._logger,
                    "job.cancelled",
                    job_id=job.job_id,
                    completed=job.completed_count,
                    unattempted=job.total_units - job.completed_count,
                )
                return job

            result, storage_errors = await self._run_batch(index, batch, credential)
            job = self._jobs_store.update_job(
                apply_batch_counts(job, result.succeeded + result.skipped, result.failed),
                job.etag or "",
            )
            if storage_errors:
                # Counts above cover only the tasks whose rows were written.
                raise storage_errors[0]
            percentage = calculate_percentage(job.completed_count, job.total_units)
            log_event(
                self._logger,
                "batch.completed",
                job_id=job.job_id,
                batch_index=index,
                batch_count=len(batches),
                succeeded=result.succeeded,
                skipped=result.skipped,
                failed=result.failed,
                completed=job.completed_count,
                total=job.total_units,
                percentage=percentage,
            )
            await self._report(report_progress, percentage)

            if index < len(batches) - 1 and self._config.batch_delay_seconds > 0:
                await self._sleep(self._config.batch_delay_seconds)

        job = self._jobs_store.update_job(finish_job(job), job.etag or "")
        self._cancellations.clear(job.job_id)
        log_event(
            self._logger,
            "job.finished",
            job_id=job.job_id,
            status=job.status,
            success_count=job.success_count,
            failed_count=job.failed_count,
        )
        return job

    async def _resolve_project_names(self, credential: str, project_ids: List[str]) -> Dict[str, str]:
        names: Dict[str, str] = {}
        for project_id in project_ids:
            if project_id in names:
                continue
            names[project_id] = await self._client.get_project_name(credential, project_id)
        return names

    def _build_tasks(self, job: Job, names: Dict[str, str]) -> List[Task]:
        now = now_iso()
        tasks: List[Task] = []
        for project_id in job.project_ids:
            for email in job.user_emails:
                tasks.append(
                    Task(
                        job_id=job.job_id,
                        task_index=len(tasks),
                        project_id=project_id,
                        project_name=names.get(project_id),
                        user_email=email,
                        role=job.role,
                        status=TaskStatus.PENDING,
                        created_at=now,
                        updated_at=now,
                    )
                )
        return tasks

    async def _run_batch(
        self, index: int, batch: List[Task], credential: str
    ) -> Tuple[BatchResult, List[Exception]]:
        results = await asyncio.gather(
            *(self._run_task(task, credential) for task in batch), return_exceptions=True
        )
        # Remote failures are already outcomes; anything raised here came from storage.
        outcomes = [result for result in results if not isinstance(result, BaseException)]
        errors: List[Exception] = []
        for result in results:
            if isinstance(result, Exception):
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
        return BatchResult(batch_index=index, outcomes=outcomes), errors

    async def _run_task(self, task: Task, credential: str) -> TaskOutcome:
        task = self._tasks_store.update_task(start_task(task), task.etag or "")
        started = self._clock()
        outcome: TaskOutcome
        try:
            result = await self._client.ensure_role(credential, task.project_id, task.user_email, task.role)
        except MembershipError as exc:
            outcome = TaskFailed(
                task_key=task.task_key,
                error_code=exc.error_code,
                error_message=exc.message,
                status_code=exc.status_code,
                request_id=exc.request_id,
            )
        except Exception as exc:
            self._logger.warning("unexpected membership failure for %s", task.task_key, exc_info=exc)
            outcome = TaskFailed(
                task_key=task.task_key,
                error_code=UNEXPECTED_ERROR,
                error_message=str(exc) or exc.__class__.__name__,
            )
        else:
            if result.action == TaskAction.SKIPPED:
                outcome = TaskSkipped(task_key=task.task_key, previous_role=result.previous_role)
            else:
                outcome = TaskSucceeded(
                    task_key=task.task_key,
                    action=result.action,
                    previous_role=result.previous_role,
                    request_id=result.request_id,
                )
        duration_ms = int((self._clock() - started) * 1000)
        self._record(task, outcome, duration_ms)
        return outcome

    def _record(self, task: Task, outcome: TaskOutcome, duration_ms: int) -> None:
        if isinstance(outcome, TaskFailed):
            fail_task(
                task,
                outcome.error_code,
                outcome.error_message,
                outcome.status_code,
                outcome.request_id,
                duration_ms,
            )
            log_event(
                self._logger,
                "task.failed",
                level=logging.WARNING,
                job_id=task.job_id,
                project_id=task.project_id,
                user_email=task.user_email,
                error_code=outcome.error_code,
                status_code=outcome.status_code,
                request_id=outcome.request_id,
            )
        elif isinstance(outcome, TaskSkipped):
            succeed_task(task, TaskAction.SKIPPED, outcome.previous_role, None, duration_ms)
        else:
            succeed_task(task, outcome.action, outcome.previous_role, outcome.request_id, duration_ms)
        self._tasks_store.update_task(task, task.etag or "")

    def _abort(self, job_id: str, message: str) -> None:
        current = self._jobs_store.get_job(job_id)
        if current is None or current.status != JobStatus.PROCESSING:
            return
        self._jobs_store.update_job(abort_job(current, message), current.etag or "")
        self._cancellations.clear(job_id)

    async def _report(self, report_progress: Optional[ProgressCallback], percentage: int) -> None:
        if report_progress is None:
            return
        result = report_progress(percentage)
        if inspect.isawaitable(result):
            await result


def job_handler(scheduler: BatchScheduler) -> Callable[..., Awaitable[Job]]:
    """Adapt the scheduler to the queue consumer contract."""

    async def handle(job_id: str, payload: Dict[str, Any], report_progress: Optional[ProgressCallback] = None) -> Job:
        return await scheduler.process(job_id, payload["credential"], report_progress)

    return handle
