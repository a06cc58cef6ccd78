from typing import List, Optional, Protocol

from .models import Job, Task


class JobsStore(Protocol):
    def create_job(self, job: Job) -> Job:
        ...

    def get_job(self, job_id: str) -> Optional[Job]:
        ...

    def update_job(self, job: Job, etag: str) -> Job:
        ...

    def list_jobs(self, requester_id: str, limit: int, offset: int) -> List[Job]:
        ...

    def find_by_idempotency(self, requester_id: str, idempotency_hash: str) -> Optional[str]:
        ...


class TasksStore(Protocol):
    def create_tasks(self, job_id: str, tasks: List[Task]) -> List[Task]:
        ...

    def get_tasks(self, job_id: str) -> List[Task]:
        ...

    def update_task(self, task: Task, etag: str) -> Task:
        ...


class CancellationStore(Protocol):
    def request(self, job_id: str) -> None:
        ...

    def is_requested(self, job_id: str) -> bool:
        ...

    def clear(self, job_id: str) -> None:
        ...
