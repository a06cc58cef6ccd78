from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bulkgrant.ledger.models import Job


@dataclass(frozen=True)
class JobProgress:
    total: int
    completed: int
    success: int
    failed: int
    percentage: int
    estimated_seconds_remaining: Optional[int]

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return round(completed / total * 100)


def estimate_time_remaining(
    started_at: Optional[str], completed: int, total: int, now: Optional[datetime] = None
) -> Optional[int]:
    if started_at is None or completed == 0 or completed >= total:
        return None
    now = now or datetime.now(timezone.utc)
    elapsed = (now - datetime.fromisoformat(started_at)).total_seconds()
    if elapsed < 0:
        return None
    return round(elapsed / completed * (total - completed))


def compute_progress(job: Job, now: Optional[datetime] = None) -> JobProgress:
    eta = None
    if not job.is_terminal:
        eta = estimate_time_remaining(job.started_at, job.completed_count, job.total_units, now)
    return JobProgress(
        total=job.total_units,
        completed=job.completed_count,
        success=job.success_count,
        failed=job.failed_count,
        percentage=calculate_percentage(job.completed_count, job.total_units),
        estimated_seconds_remaining=eta,
    )
