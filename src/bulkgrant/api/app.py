import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from temporalio.client import Client as TemporalClient

from bulkgrant.config.settings import AppSettings
from bulkgrant.errors import JobNotFoundError, RequestValidationError
from bulkgrant.ledger.memory_store import MemoryCancellationStore, MemoryJobsStore, MemoryTasksStore
from bulkgrant.processor.scheduler import BatchScheduler, MembershipAPI, SchedulerConfig, job_handler
from bulkgrant.queue.memory_queue import MemoryJobQueue
from bulkgrant.queue.temporal_queue import TemporalJobQueue
from bulkgrant.remote.client import MembershipClient
from bulkgrant.remote.errors import MembershipError
from bulkgrant.service import BulkAssignmentService
from bulkgrant.shared.logging import get_logger, log_event
from bulkgrant.temporal_worker.workflow import build_worker
from bulkgrant.validation.validator import SchemaValidator


def _validation_error(exc: RequestValidationError) -> HTTPException:
    detail: Dict[str, Any] = {"message": str(exc)}
    if exc.invalid_emails:
        detail["invalid_emails"] = exc.invalid_emails
    return HTTPException(status_code=422, detail=detail)


def create_app(
    settings: Optional[AppSettings] = None,
    membership_client: Optional[MembershipAPI] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        background: Optional[asyncio.Task] = None
        temporal_worker = None
        if settings.queue_backend == "memory":
            queue = MemoryJobQueue()
            background = asyncio.create_task(
                queue.run_worker(job_handler(scheduler), settings.worker_concurrency)
            )
        elif settings.queue_backend == "temporal":
            app.state.temporal_client = await TemporalClient.connect(
                settings.temporal_address,
                namespace=settings.temporal_namespace,
            )
            queue = TemporalJobQueue(
                app.state.temporal_client,
                settings.temporal_task_queue,
                settings.temporal_workflow_execution_timeout_seconds,
                settings.temporal_activity_timeout_seconds,
            )
            # The worker shares this process's stores, so it runs beside the API.
            temporal_worker = build_worker(app.state.temporal_client, settings.temporal_task_queue, scheduler)
            background = asyncio.create_task(temporal_worker.run())
        else:
            raise RuntimeError(f"Unsupported queue backend: {settings.queue_backend}")

        app.state.queue = queue
        app.state.service = BulkAssignmentService(
            jobs_store,
            tasks_store,
            cancellations,
            queue,
            validator=validator,
            settings=settings,
            client=client,
        )
        log_event(logger, "app.started", queue_backend=settings.queue_backend)
        try:
            yield
        finally:
            if temporal_worker is not None:
                await temporal_worker.shutdown()
            if background is not None:
                background.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await background
            if owns_client:
                await client.aclose()
            log_event(logger, "app.stopped", queue_backend=settings.queue_backend)

    app = FastAPI(title="bulkgrant", lifespan=lifespan)
    logger = get_logger("bulkgrant.api")

    settings = settings or AppSettings.from_env()
    owns_client = membership_client is None
    client = membership_client or MembershipClient.from_settings(settings)
    validator = SchemaValidator()
    jobs_store = MemoryJobsStore()
    tasks_store = MemoryTasksStore()
    cancellations = MemoryCancellationStore()
    scheduler = BatchScheduler(
        jobs_store,
        tasks_store,
        cancellations,
        client,
        config=SchedulerConfig.from_settings(settings),
    )
    app.state.settings = settings
    app.state.jobs_store = jobs_store
    app.state.tasks_store = tasks_store
    app.state.cancellations = cancellations
    app.state.scheduler = scheduler
    app.state.temporal_client = None

    @app.post("/v1/bulk/assign")
    async def submit_assignment(payload: Dict[str, Any]):
        log_event(
            logger,
            "request.assign",
            requester_id=payload.get("requester_id"),
            job_id=payload.get("job_id"),
        )
        try:
            job_id = await app.state.service.submit_job(
                payload.get("requester_id"),
                payload.get("user_emails"),
                payload.get("project_ids"),
                payload.get("role"),
                payload.get("credential"),
                job_id=payload.get("job_id"),
                idempotency_key=payload.get("idempotency_key"),
            )
        except RequestValidationError as exc:
            raise _validation_error(exc) from exc
        except JobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="job not found") from exc
        return JSONResponse(status_code=202, content={"jobId": job_id, "status": "accepted"})

    @app.post("/v1/bulk/preview")
    async def preview_assignment(payload: Dict[str, Any]):
        log_event(logger, "request.preview", requester_id=payload.get("requester_id"))
        try:
            return await app.state.service.preview(
                payload.get("requester_id"),
                payload.get("user_emails"),
                payload.get("project_ids"),
                payload.get("credential"),
                role=payload.get("role"),
            )
        except RequestValidationError as exc:
            raise _validation_error(exc) from exc
        except MembershipError as exc:
            raise HTTPException(
                status_code=502, detail={"message": exc.message, "error_code": exc.error_code}
            ) from exc

    @app.get("/v1/bulk/status/{job_id}")
    async def job_status(job_id: str, requester_id: Optional[str] = None):
        try:
            return app.state.service.get_job_status(job_id, requester_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="job not found") from exc

    @app.get("/v1/bulk/history")
    async def job_history(requester_id: str, limit: Optional[int] = None, offset: int = 0):
        jobs = app.state.service.list_jobs(requester_id, limit, offset)
        return {"jobs": jobs, "count": len(jobs)}

    @app.post("/v1/bulk/{job_id}:cancel")
    async def cancel_assignment(job_id: str, requester_id: Optional[str] = None):
        try:
            job = app.state.service.cancel_job(job_id, requester_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="job not found") from exc
        return {"jobId": job.job_id, "status": job.status}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("bulkgrant.api.app:create_app", host="0.0.0.0", port=8000, factory=True)
