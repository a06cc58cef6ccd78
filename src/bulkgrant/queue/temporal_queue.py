from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict

from temporalio.client import Client as TemporalClient
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError

from bulkgrant.shared.logging import get_logger, log_event

from .interfaces import JobQueue


WORKFLOW_NAME = "BulkAssignmentWorkflow"


@dataclass
class TemporalJobQueue(JobQueue):
    client: TemporalClient
    task_queue: str
    execution_timeout_seconds: int
    activity_timeout_seconds: int

    async def enqueue(self, job_id: str, payload: Dict[str, Any]) -> bool:
        logger = get_logger("bulkgrant.queue")
        workflow_input = {
            **payload,
            "job_id": job_id,
            "activity_timeout_seconds": self.activity_timeout_seconds,
        }
        try:
            await self.client.start_workflow(
                WORKFLOW_NAME,
                workflow_input,
                id=job_id,
                task_queue=self.task_queue,
                execution_timeout=timedelta(seconds=self.execution_timeout_seconds),
                id_reuse_policy=WorkflowIDReusePolicy.REJECT_DUPLICATE,
            )
        except WorkflowAlreadyStartedError:
            log_event(logger, "queue.duplicate", job_id=job_id, backend="temporal")
            return False
        log_event(logger, "queue.enqueued", job_id=job_id, backend="temporal", task_queue=self.task_queue)
        return True
