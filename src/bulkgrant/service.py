from dataclasses import asdict
from typing import Any, Dict, List, Optional
from uuid import uuid4

from bulkgrant.config.settings import AppSettings
from bulkgrant.errors import BulkGrantError, JobNotFoundError
from bulkgrant.ledger.interfaces import CancellationStore, JobsStore, TasksStore
from bulkgrant.ledger.models import Job, JobStatus, JobSummary
from bulkgrant.ledger.transitions import cancel_job, now_iso
from bulkgrant.processor.progress import compute_progress
from bulkgrant.processor.scheduler import MembershipAPI
from bulkgrant.queue.interfaces import JobQueue
from bulkgrant.remote.client import ProjectMember
from bulkgrant.shared.logging import get_logger, log_event
from bulkgrant.validation.idempotency import request_hash
from bulkgrant.validation.validator import PREVIEW_SCHEMA, SchemaValidator


TASK_FIELDS = (
    "task_index",
    "project_id",
    "project_name",
    "user_email",
    "role",
    "status",
    "previous_role",
    "action_taken",
    "error_code",
    "error_message",
    "status_code",
    "request_id",
    "started_at",
    "completed_at",
    "duration_ms",
)


def _summary(job: Job) -> JobSummary:
    return JobSummary(
        job_id=job.job_id,
        status=job.status,
        total_units=job.total_units,
        success_count=job.success_count,
        failed_count=job.failed_count,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        user_count=len(job.user_emails),
        project_count=len(job.project_ids),
        role=job.role,
    )


def _preview_entry(
    project_id: str,
    project_name: str,
    email: str,
    member: Optional[ProjectMember],
    role: Optional[str],
) -> Dict[str, Any]:
    has_access = member is not None
    current_role = member.role_ids[0] if member is not None and member.role_ids else None
    unchanged = member is not None and role is not None and role in member.role_ids
    return {
        "user_email": email,
        "project_id": project_id,
        "project_name": project_name,
        "current_access": {"has_access": has_access, "current_role": current_role},
        "will_be_added": not has_access,
        "will_be_updated": has_access and not unchanged,
        "will_be_skipped": unchanged,
    }


class BulkAssignmentService:
    """Job operations exposed to the HTTP layer."""

    def __init__(
        self,
        jobs_store: JobsStore,
        tasks_store: TasksStore,
        cancellations: CancellationStore,
        queue: JobQueue,
        validator: Optional[SchemaValidator] = None,
        settings: Optional[AppSettings] = None,
        client: Optional[MembershipAPI] = None,
    ) -> None:
        self.jobs_store = jobs_store
        self.tasks_store = tasks_store
        self.cancellations = cancellations
        self.queue = queue
        self.validator = validator or SchemaValidator()
        self.settings = settings or AppSettings()
        self.client = client
        self._logger = get_logger("bulkgrant.service")

    async def submit_job(
        self,
        requester_id: str,
        user_emails: List[str],
        project_ids: List[str],
        role: str,
        credential: str,
        job_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        credential_ref: Optional[str] = None,
    ) -> str:
        request = {
            "requester_id": requester_id,
            "user_emails": user_emails,
            "project_ids": project_ids,
            "role": role,
            "credential": credential,
            "job_id": job_id,
            "idempotency_key": idempotency_key,
        }
        emails, projects = self.validator.normalize_request(request)
        log_event(
            self._logger,
            "job.submitted",
            requester_id=requester_id,
            job_id=job_id,
            user_count=len(emails),
            project_count=len(projects),
            role=role,
        )

        if job_id:
            existing = self.jobs_store.get_job(job_id)
            if existing is not None:
                if existing.requester_id != requester_id:
                    raise JobNotFoundError(job_id)
                return await self._resume_existing(existing, credential)

        digest = request_hash(requester_id, emails, projects, role, idempotency_key)
        if digest:
            existing_job_id = self.jobs_store.find_by_idempotency(requester_id, digest)
            if existing_job_id:
                log_event(self._logger, "job.idempotent_hit", job_id=existing_job_id, requester_id=requester_id)
                return existing_job_id

        created_at = now_iso()
        job = Job(
            job_id=job_id or uuid4().hex,
            requester_id=requester_id,
            user_emails=emails,
            project_ids=projects,
            role=role,
            credential_ref=credential_ref,
            total_units=len(emails) * len(projects),
            status=JobStatus.PENDING,
            created_at=created_at,
            updated_at=created_at,
            idempotency_key=idempotency_key,
            idempotency_hash=digest,
        )
        job = self.jobs_store.create_job(job)
        log_event(self._logger, "job.created", job_id=job.job_id, total_units=job.total_units)

        # The job stays pending if the enqueue fails; resubmitting the same job_id retries it.
        await self.queue.enqueue(job.job_id, {"credential": credential})
        return job.job_id

    async def _resume_existing(self, job: Job, credential: str) -> str:
        if job.status == JobStatus.PENDING:
            enqueued = await self.queue.enqueue(job.job_id, {"credential": credential})
            log_event(self._logger, "job.resubmitted", job_id=job.job_id, enqueued=enqueued)
        else:
            log_event(self._logger, "job.duplicate_submit", job_id=job.job_id, status=job.status)
        return job.job_id

    async def preview(
        self,
        requester_id: str,
        user_emails: List[str],
        project_ids: List[str],
        credential: str,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Report what a submit would do to each (project, user) pair without changing anything.

        Without a role, any existing member counts as an update, since the
        role they would end up with is unknown.
        """
        if self.client is None:
            raise BulkGrantError("preview requires a membership client")
        request = {
            "requester_id": requester_id,
            "user_emails": user_emails,
            "project_ids": project_ids,
            "role": role,
            "credential": credential,
        }
        emails, projects = self.validator.normalize_request(request, PREVIEW_SCHEMA)

        entries: List[Dict[str, Any]] = []
        for project_id in projects:
            project_name = await self.client.get_project_name(credential, project_id)
            members = await self.client.list_members(credential, project_id)
            by_email = {member.email.lower(): member for member in members}
            for email in emails:
                entries.append(_preview_entry(project_id, project_name, email, by_email.get(email), role))

        summary = {
            "total_operations": len(entries),
            "new_users": sum(1 for entry in entries if entry["will_be_added"]),
            "updates": sum(1 for entry in entries if entry["will_be_updated"]),
            "unchanged": sum(1 for entry in entries if entry["will_be_skipped"]),
        }
        log_event(
            self._logger,
            "preview.generated",
            requester_id=requester_id,
            user_count=len(emails),
            project_count=len(projects),
            **summary,
        )
        return {"preview": entries, "summary": summary}

    def _load_job(self, job_id: str, requester_id: Optional[str]) -> Job:
        job = self.jobs_store.get_job(job_id)
        if job is None or (requester_id is not None and job.requester_id != requester_id):
            raise JobNotFoundError(job_id)
        return job

    def get_job_status(self, job_id: str, requester_id: Optional[str] = None) -> Dict[str, Any]:
        job = self._load_job(job_id, requester_id)
        tasks = self.tasks_store.get_tasks(job_id)
        return {
            "job_id": job.job_id,
            "requester_id": job.requester_id,
            "status": job.status,
            "role": job.role,
            "user_emails": job.user_emails,
            "project_ids": job.project_ids,
            "progress": compute_progress(job).as_dict(),
            "tasks": [{name: getattr(task, name) for name in TASK_FIELDS} for task in tasks],
            "created_at": job.created_at,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
            "error_message": job.error_message,
        }

    def list_jobs(self, requester_id: str, limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        if limit is None:
            limit = self.settings.history_default_limit
        limit = max(0, min(limit, self.settings.history_max_limit))
        offset = max(0, offset)
        jobs = self.jobs_store.list_jobs(requester_id, limit, offset)
        return [asdict(_summary(job)) for job in jobs]

    def cancel_job(self, job_id: str, requester_id: Optional[str] = None) -> Job:
        job = self._load_job(job_id, requester_id)
        if job.status == JobStatus.PENDING:
            job = self.jobs_store.update_job(cancel_job(job), job.etag or "")
            log_event(self._logger, "job.cancelled", job_id=job_id, completed=0, unattempted=job.total_units)
        elif job.status == JobStatus.PROCESSING:
            self.cancellations.request(job_id)
            log_event(self._logger, "job.cancel_requested", job_id=job_id, completed=job.completed_count)
        return job
