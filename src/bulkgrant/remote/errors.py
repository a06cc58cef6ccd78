from typing import Optional


RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
UPSTREAM_5XX = "UPSTREAM_5XX"
NETWORK_ERROR = "NETWORK_ERROR"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class MembershipError(Exception):
    """A membership API call that failed after the retry policy gave up."""

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if error_code is None and status_code is not None:
            error_code = f"HTTP_{status_code}"
        self.error_code = error_code
        self.request_id = request_id


class RateLimitExceeded(MembershipError):
    retryable = True

    def __init__(self, message: str, retry_after: float, request_id: Optional[str] = None) -> None:
        super().__init__(message, status_code=429, error_code=RATE_LIMIT_EXCEEDED, request_id=request_id)
        self.retry_after = retry_after


class UpstreamServerError(MembershipError):
    retryable = True

    def __init__(self, message: str, status_code: int, request_id: Optional[str] = None) -> None:
        super().__init__(message, status_code=status_code, error_code=UPSTREAM_5XX, request_id=request_id)


class UpstreamUnavailableError(MembershipError):
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=None, error_code=NETWORK_ERROR)
