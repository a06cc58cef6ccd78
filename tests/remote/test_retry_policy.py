from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

from bulkgrant.config.settings import AppSettings
from bulkgrant.remote.retry import RetryPolicy


def test_attempt_budget():
    policy = RetryPolicy(max_attempts=3)
    assert policy.can_retry(1)
    assert policy.can_retry(2)
    assert not policy.can_retry(3)


def test_backoff_is_linear_without_jitter():
    policy = RetryPolicy(base_delay_seconds=1.5)
    assert [policy.backoff(attempt) for attempt in (1, 2, 3)] == [1.5, 3.0, 4.5]


def test_backoff_jitter_is_bounded():
    policy = RetryPolicy(base_delay_seconds=1.0, jitter_seconds=0.5)
    for _ in range(20):
        assert 2.0 <= policy.backoff(2) <= 2.5


def test_retry_after_parsing_falls_back_to_default():
    policy = RetryPolicy(default_retry_after_seconds=60.0)
    assert policy.retry_after("2") == 2.0
    assert policy.retry_after(" 0.5 ") == 0.5
    assert policy.retry_after(None) == 60.0
    assert policy.retry_after("-1") == 60.0
    assert policy.retry_after("soon") == 60.0


def test_retry_after_rejects_non_finite_values():
    policy = RetryPolicy(default_retry_after_seconds=60.0)
    assert policy.retry_after("inf") == 60.0
    assert policy.retry_after("-inf") == 60.0
    assert policy.retry_after("nan") == 60.0


def test_retry_after_accepts_http_dates():
    policy = RetryPolicy(default_retry_after_seconds=60.0)
    later = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=30), usegmt=True)
    earlier = format_datetime(datetime.now(timezone.utc) - timedelta(minutes=5), usegmt=True)

    assert 25.0 <= policy.retry_after(later) <= 30.0
    assert policy.retry_after(earlier) == 0.0


def test_policy_from_settings():
    settings = AppSettings(retry_max_attempts=5, retry_base_delay_seconds=0.1, retry_default_after_seconds=10.0)
    policy = RetryPolicy.from_settings(settings)
    assert policy.max_attempts == 5
    assert policy.base_delay_seconds == 0.1
    assert policy.default_retry_after_seconds == 10.0
    assert policy.jitter_seconds == 0.0
