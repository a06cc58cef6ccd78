from datetime import timedelta
from typing import Any, Dict

from temporalio import activity, workflow
from temporalio.client import Client
from temporalio.common import RetryPolicy as TemporalRetryPolicy
from temporalio.exceptions import ApplicationError
from temporalio.worker import Worker

with workflow.unsafe.imports_passed_through():
    from bulkgrant.errors import JobAbortedError
    from bulkgrant.processor.scheduler import BatchScheduler
    from bulkgrant.queue.temporal_queue import WORKFLOW_NAME


ACTIVITY_NAME = "process_bulk_assignment"


class BulkAssignmentActivities:
    def __init__(self, scheduler: BatchScheduler) -> None:
        self._scheduler = scheduler

    @activity.defn(name=ACTIVITY_NAME)
    async def process_bulk_assignment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        def report_progress(percentage: int) -> None:
            activity.heartbeat(percentage)

        try:
            job = await self._scheduler.process(payload["job_id"], payload["credential"], report_progress)
        except JobAbortedError as exc:
            # Job failure is terminal; a Temporal retry would find the job already failed.
            raise ApplicationError(str(exc), type="JobAborted", non_retryable=True) from exc
        return {
            "job_id": job.job_id,
            "status": job.status,
            "total_units": job.total_units,
            "success_count": job.success_count,
            "failed_count": job.failed_count,
        }


@workflow.defn(name=WORKFLOW_NAME)
class BulkAssignmentWorkflow:
    @workflow.run
    async def run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await workflow.execute_activity(
            ACTIVITY_NAME,
            payload,
            start_to_close_timeout=timedelta(seconds=payload.get("activity_timeout_seconds", 3600)),
            retry_policy=TemporalRetryPolicy(maximum_attempts=1),
        )


def build_worker(client: Client, task_queue: str, scheduler: BatchScheduler) -> Worker:
    activities = BulkAssignmentActivities(scheduler)
    return Worker(
        client,
        task_queue=task_queue,
        workflows=[BulkAssignmentWorkflow],
        activities=[activities.process_bulk_assignment],
    )
