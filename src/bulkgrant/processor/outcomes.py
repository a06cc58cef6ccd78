from dataclasses import dataclass
from typing import List, Optional, Sequence, Union


@dataclass(frozen=True)
class TaskSucceeded:
    task_key: str
    action: str
    previous_role: Optional[str]
    request_id: Optional[str]


@dataclass(frozen=True)
class TaskSkipped:
    task_key: str
    previous_role: Optional[str]


@dataclass(frozen=True)
class TaskFailed:
    task_key: str
    error_code: Optional[str]
    error_message: str
    status_code: Optional[int] = None
    request_id: Optional[str] = None


TaskOutcome = Union[TaskSucceeded, TaskSkipped, TaskFailed]


@dataclass(frozen=True)
class BatchResult:
    batch_index: int
    outcomes: List[TaskOutcome]

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if isinstance(outcome, TaskSucceeded))

    @property
    def skipped(self) -> int:
        return sum(1 for outcome in self.outcomes if isinstance(outcome, TaskSkipped))

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if isinstance(outcome, TaskFailed))

    @property
    def settled(self) -> int:
        return len(self.outcomes)


def chunk(items: Sequence, size: int) -> List[list]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]
