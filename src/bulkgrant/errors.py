from typing import List, Optional


class BulkGrantError(RuntimeError):
    pass


class RequestValidationError(BulkGrantError):
    def __init__(self, message: str, invalid_emails: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.invalid_emails = invalid_emails or []


class JobNotFoundError(BulkGrantError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id


class DuplicateJobError(BulkGrantError):
    pass


class StaleRecordError(BulkGrantError):
    pass


class InvalidTransitionError(BulkGrantError):
    def __init__(self, kind: str, current: str, target: str) -> None:
        super().__init__(f"{kind} cannot move from {current} to {target}")
        self.current = current
        self.target = target


class JobAbortedError(BulkGrantError):
    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(f"job {job_id} aborted: {message}")
        self.job_id = job_id
        self.reason = message
