import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from bulkgrant.config.settings import AppSettings


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    default_retry_after_seconds: float = 60.0
    jitter_seconds: float = 0.0

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            default_retry_after_seconds=settings.retry_default_after_seconds,
            jitter_seconds=settings.retry_jitter_seconds,
        )

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def backoff(self, attempt: int) -> float:
        delay = self.base_delay_seconds * attempt
        if self.jitter_seconds > 0:
            delay += random.uniform(0, self.jitter_seconds)
        return delay

    def retry_after(self, header_value: Optional[str]) -> float:
        """Seconds to wait for a Retry-After header in delta-seconds or HTTP-date form."""
        if header_value is None:
            return self.default_retry_after_seconds
        value = header_value.strip()
        try:
            seconds = float(value)
        except ValueError:
            return self._seconds_until(value)
        if not math.isfinite(seconds) or seconds < 0:
            return self.default_retry_after_seconds
        return seconds

    def _seconds_until(self, value: str) -> float:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return self.default_retry_after_seconds
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
