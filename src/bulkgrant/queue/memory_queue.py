import asyncio
import contextlib
import logging
from typing import Any, Dict, Optional, Set, Tuple

from bulkgrant.errors import JobAbortedError
from bulkgrant.shared.logging import get_logger, log_event

from .interfaces import JobHandler, JobQueue


class MemoryJobQueue(JobQueue):
    """In-process queue for a single service instance.

    ``_seen`` holds ids that are queued or running; a finished id may be
    enqueued again and the job ledger decides whether there is work left.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Tuple[str, Dict[str, Any]]]" = asyncio.Queue()
        self._seen: Set[str] = set()
        self._progress: Dict[str, int] = {}
        self._logger = get_logger("bulkgrant.queue")

    async def enqueue(self, job_id: str, payload: Dict[str, Any]) -> bool:
        if job_id in self._seen:
            log_event(self._logger, "queue.duplicate", job_id=job_id)
            return False
        self._seen.add(job_id)
        self._queue.put_nowait((job_id, payload))
        log_event(self._logger, "queue.enqueued", job_id=job_id, depth=self._queue.qsize())
        return True

    def progress(self, job_id: str) -> Optional[int]:
        return self._progress.get(job_id)

    def depth(self) -> int:
        return self._queue.qsize()

    async def run_worker(self, handler: JobHandler, concurrency: int) -> None:
        """Consume jobs forever, running at most ``concurrency`` of them at once.

        Cancelling the worker stops intake; jobs already running are awaited
        to completion before the cancellation propagates.
        """
        semaphore = asyncio.Semaphore(concurrency)
        running: Set["asyncio.Task[None]"] = set()
        log_event(self._logger, "worker.started", concurrency=concurrency)
        try:
            while True:
                # Take a slot first so a cancelled get() never drops a dequeued job.
                await semaphore.acquire()
                try:
                    job_id, payload = await self._queue.get()
                except BaseException:
                    semaphore.release()
                    raise
                task = asyncio.create_task(self._consume(handler, job_id, payload, semaphore))
                running.add(task)
                task.add_done_callback(running.discard)
        finally:
            in_flight = list(running)
            log_event(self._logger, "worker.draining", in_flight=len(in_flight))
            await asyncio.gather(*in_flight, return_exceptions=True)
            log_event(self._logger, "worker.stopped", drained=len(in_flight))

    async def run_until_empty(self, handler: JobHandler, concurrency: int) -> None:
        worker = asyncio.create_task(self.run_worker(handler, concurrency))
        try:
            await self._queue.join()
        finally:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    async def _consume(
        self,
        handler: JobHandler,
        job_id: str,
        payload: Dict[str, Any],
        semaphore: asyncio.Semaphore,
    ) -> None:
        def report_progress(percentage: int) -> None:
            self._progress[job_id] = percentage

        try:
            log_event(self._logger, "worker.job_received", job_id=job_id)
            await handler(job_id, payload, report_progress)
            log_event(self._logger, "worker.job_done", job_id=job_id)
        except JobAbortedError as exc:
            log_event(self._logger, "worker.job_aborted", level=logging.WARNING, job_id=job_id, error=exc.reason)
        except Exception as exc:
            self._logger.exception("worker.job_crashed job_id=%s", job_id, exc_info=exc)
        finally:
            self._progress.pop(job_id, None)
            self._seen.discard(job_id)
            semaphore.release()
            self._queue.task_done()
