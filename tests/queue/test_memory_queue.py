import asyncio
import contextlib

from bulkgrant.errors import JobAbortedError
from bulkgrant.ledger.models import JobStatus, TaskStatus
from bulkgrant.processor.scheduler import BatchScheduler, SchedulerConfig, job_handler
from bulkgrant.queue.memory_queue import MemoryJobQueue

from fakes import FakeMembershipClient, make_job, make_stores


def test_enqueue_is_idempotent_by_job_id():
    async def scenario():
        queue = MemoryJobQueue()
        first = await queue.enqueue("job1", {"credential": "token"})
        second = await queue.enqueue("job1", {"credential": "token"})
        return first, second, queue.depth()

    assert asyncio.run(scenario()) == (True, False, 1)


def test_worker_runs_handlers_and_records_progress():
    handled = []
    observed = {}

    async def scenario():
        queue = MemoryJobQueue()

        async def handler(job_id, payload, report_progress):
            handled.append((job_id, payload["credential"]))
            report_progress(50)
            observed[job_id] = queue.progress(job_id)
            report_progress(100)

        await queue.enqueue("job1", {"credential": "t1"})
        await queue.enqueue("job2", {"credential": "t2"})
        await queue.run_until_empty(handler, concurrency=2)
        return queue

    queue = asyncio.run(scenario())
    assert sorted(handled) == [("job1", "t1"), ("job2", "t2")]
    assert observed == {"job1": 50, "job2": 50}
    assert queue.progress("job1") is None
    assert queue.progress("missing") is None
    assert queue.depth() == 0


def test_finished_job_can_be_enqueued_again():
    handled = []

    async def handler(job_id, payload, report_progress):
        handled.append(job_id)

    async def scenario():
        queue = MemoryJobQueue()
        await queue.enqueue("job1", {"credential": "token"})
        await queue.run_until_empty(handler, concurrency=1)
        again = await queue.enqueue("job1", {"credential": "token"})
        await queue.run_until_empty(handler, concurrency=1)
        return again

    assert asyncio.run(scenario()) is True
    assert handled == ["job1", "job1"]


def test_worker_limits_concurrent_jobs():
    state = {"running": 0, "peak": 0}

    async def handler(job_id, payload, report_progress):
        state["running"] += 1
        state["peak"] = max(state["peak"], state["running"])
        await asyncio.sleep(0.01)
        state["running"] -= 1

    async def scenario():
        queue = MemoryJobQueue()
        for index in range(6):
            await queue.enqueue(f"job{index}", {"credential": "token"})
        await queue.run_until_empty(handler, concurrency=3)

    asyncio.run(scenario())
    assert state["peak"] == 3


def test_worker_keeps_consuming_after_failures():
    handled = []

    async def handler(job_id, payload, report_progress):
        handled.append(job_id)
        if job_id == "job1":
            raise JobAbortedError(job_id, "storage unavailable")
        if job_id == "job2":
            raise RuntimeError("boom")

    async def scenario():
        queue = MemoryJobQueue()
        for job_id in ("job1", "job2", "job3"):
            await queue.enqueue(job_id, {"credential": "token"})
        await queue.run_until_empty(handler, concurrency=1)

    asyncio.run(scenario())
    assert handled == ["job1", "job2", "job3"]


def test_stopping_worker_lets_running_jobs_finish():
    started = asyncio.Event()
    finished = []

    async def handler(job_id, payload, report_progress):
        started.set()
        await asyncio.sleep(0.05)
        finished.append(job_id)

    async def scenario():
        queue = MemoryJobQueue()
        await queue.enqueue("job1", {"credential": "token"})
        worker = asyncio.create_task(queue.run_worker(handler, concurrency=1))
        await started.wait()
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
        return queue

    queue = asyncio.run(scenario())
    assert finished == ["job1"]
    assert queue.depth() == 0


def test_stopping_worker_completes_scheduled_job():
    jobs_store, tasks_store, cancellations = make_stores()
    make_job(jobs_store, ["a@example.com", "b@example.com"], ["p1", "p2"])
    client = FakeMembershipClient(delay=0.01)
    scheduler = BatchScheduler(
        jobs_store,
        tasks_store,
        cancellations,
        client,
        config=SchedulerConfig(batch_size=1, batch_delay_seconds=0),
    )

    async def scenario():
        queue = MemoryJobQueue()
        await queue.enqueue("job1", {"credential": "token"})
        worker = asyncio.create_task(queue.run_worker(job_handler(scheduler), concurrency=1))
        while not client.calls:
            await asyncio.sleep(0)
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

    asyncio.run(scenario())
    job = jobs_store.get_job("job1")
    assert job.status == JobStatus.COMPLETED
    assert job.success_count == 4
    assert {task.status for task in tasks_store.get_tasks("job1")} == {TaskStatus.SUCCESS}
