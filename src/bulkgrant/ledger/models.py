from dataclasses import dataclass
from typing import List, Optional


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class TaskAction:
    ADDED = "added"
    UPDATED = "updated"
    SKIPPED = "skipped"


JOB_TERMINAL_STATES = {
    JobStatus.COMPLETED,
    JobStatus.PARTIAL_SUCCESS,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
}

TASK_TERMINAL_STATES = {TaskStatus.SUCCESS, TaskStatus.SKIPPED, TaskStatus.FAILED}


@dataclass
class Job:
    job_id: str
    requester_id: str
    user_emails: List[str]
    project_ids: List[str]
    role: str
    credential_ref: Optional[str]
    total_units: int
    status: str
    created_at: str
    updated_at: str
    completed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    idempotency_key: Optional[str] = None
    idempotency_hash: Optional[str] = None
    etag: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JOB_TERMINAL_STATES


@dataclass
class Task:
    job_id: str
    task_index: int
    project_id: str
    project_name: Optional[str]
    user_email: str
    role: str
    status: str
    created_at: str
    updated_at: str
    previous_role: Optional[str] = None
    action_taken: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    request_id: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None
    etag: Optional[str] = None

    @property
    def task_key(self) -> str:
        return f"{self.project_id}#{self.user_email}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TASK_TERMINAL_STATES


@dataclass
class JobSummary:
    job_id: str
    status: str
    total_units: int
    success_count: int
    failed_count: int
    created_at: str
    started_at: Optional[str]
    completed_at: Optional[str]
    user_count: int = 0
    project_count: int = 0
    role: Optional[str] = None
