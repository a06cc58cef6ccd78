from dataclasses import replace
from typing import Dict, List, Optional, Set

from bulkgrant.errors import DuplicateJobError, StaleRecordError

from .interfaces import CancellationStore, JobsStore, TasksStore
from .models import Job, Task


def _copy_job(job: Job) -> Job:
    return replace(job, user_emails=list(job.user_emails), project_ids=list(job.project_ids))


class MemoryJobsStore(JobsStore):
    def __init__(self) -> None:
        self._by_job_id: Dict[str, Job] = {}
        self._by_idempotency: Dict[str, str] = {}

    def create_job(self, job: Job) -> Job:
        if job.job_id in self._by_job_id:
            raise DuplicateJobError(f"job already exists: {job.job_id}")
        job = replace(_copy_job(job), etag="1")
        self._by_job_id[job.job_id] = job
        if job.idempotency_hash:
            self._by_idempotency[f"{job.requester_id}:{job.idempotency_hash}"] = job.job_id
        return _copy_job(job)

    def get_job(self, job_id: str) -> Optional[Job]:
        job = self._by_job_id.get(job_id)
        if job is None:
            return None
        return _copy_job(job)

    def update_job(self, job: Job, etag: str) -> Job:
        current = self._by_job_id.get(job.job_id)
        if current is None or current.etag != etag:
            raise StaleRecordError(f"etag mismatch for job {job.job_id}")
        updated = replace(_copy_job(job), etag=str(int(etag) + 1))
        self._by_job_id[job.job_id] = updated
        return _copy_job(updated)

    def list_jobs(self, requester_id: str, limit: int, offset: int) -> List[Job]:
        jobs = [job for job in self._by_job_id.values() if job.requester_id == requester_id]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return [_copy_job(job) for job in jobs[offset : offset + limit]]

    def find_by_idempotency(self, requester_id: str, idempotency_hash: str) -> Optional[str]:
        return self._by_idempotency.get(f"{requester_id}:{idempotency_hash}")


class MemoryTasksStore(TasksStore):
    def __init__(self) -> None:
        self._by_job: Dict[str, Dict[str, Task]] = {}

    def create_tasks(self, job_id: str, tasks: List[Task]) -> List[Task]:
        rows = self._by_job.setdefault(job_id, {})
        created: List[Task] = []
        for task in tasks:
            if task.task_key in rows:
                raise DuplicateJobError(f"task already exists: {job_id}/{task.task_key}")
            stored = replace(task, etag="1")
            rows[task.task_key] = stored
            created.append(replace(stored))
        return created

    def get_tasks(self, job_id: str) -> List[Task]:
        tasks = [replace(task) for task in self._by_job.get(job_id, {}).values()]
        return sorted(tasks, key=lambda task: task.task_index)

    def update_task(self, task: Task, etag: str) -> Task:
        rows = self._by_job.get(task.job_id, {})
        current = rows.get(task.task_key)
        if current is None:
            raise StaleRecordError(f"task not found: {task.job_id}/{task.task_key}")
        if current.etag != etag:
            raise StaleRecordError(f"etag mismatch for task {task.job_id}/{task.task_key}")
        updated = replace(task, etag=str(int(etag) + 1))
        rows[task.task_key] = updated
        return replace(updated)


class MemoryCancellationStore(CancellationStore):
    def __init__(self) -> None:
        self._requested: Set[str] = set()

    def request(self, job_id: str) -> None:
        self._requested.add(job_id)

    def is_requested(self, job_id: str) -> bool:
        return job_id in self._requested

    def clear(self, job_id: str) -> None:
        self._requested.discard(job_id)
