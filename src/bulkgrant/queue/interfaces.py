from typing import Any, Awaitable, Callable, Dict, Optional, Protocol


ReportProgress = Callable[[int], Any]
JobHandler = Callable[[str, Dict[str, Any], Optional[ReportProgress]], Awaitable[Any]]


class JobQueue(Protocol):
    async def enqueue(self, job_id: str, payload: Dict[str, Any]) -> bool:
        """Hand a job to a worker. Returns False when ``job_id`` was already enqueued."""
        ...
