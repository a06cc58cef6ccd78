from dataclasses import dataclass
import os


@dataclass
class AppSettings:
    queue_backend: str = "memory"
    membership_base_url: str = "https://developer.api.autodesk.com"
    membership_timeout_seconds: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_default_after_seconds: float = 60.0
    retry_jitter_seconds: float = 0.0
    batch_size: int = 5
    batch_delay_seconds: float = 0.5
    worker_concurrency: int = 3
    history_default_limit: int = 20
    history_max_limit: int = 100
    temporal_address: str = "localhost:7233"
    temporal_namespace: str = "default"
    temporal_task_queue: str = "bulkgrant"
    temporal_workflow_execution_timeout_seconds: int = 86400
    temporal_activity_timeout_seconds: int = 3600

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            queue_backend=os.getenv("BULKGRANT_QUEUE_BACKEND", "memory"),
            membership_base_url=os.getenv(
                "BULKGRANT_MEMBERSHIP_BASE_URL", "https://developer.api.autodesk.com"
            ),
            membership_timeout_seconds=float(os.getenv("BULKGRANT_MEMBERSHIP_TIMEOUT", "30.0")),
            retry_max_attempts=int(os.getenv("BULKGRANT_RETRY_MAX_ATTEMPTS", "3")),
            retry_base_delay_seconds=float(os.getenv("BULKGRANT_RETRY_BASE_DELAY", "1.0")),
            retry_default_after_seconds=float(os.getenv("BULKGRANT_RETRY_DEFAULT_AFTER", "60.0")),
            retry_jitter_seconds=float(os.getenv("BULKGRANT_RETRY_JITTER", "0.0")),
            batch_size=int(os.getenv("BULKGRANT_BATCH_SIZE", "5")),
            batch_delay_seconds=float(os.getenv("BULKGRANT_BATCH_DELAY", "0.5")),
            worker_concurrency=int(os.getenv("BULKGRANT_WORKER_CONCURRENCY", "3")),
            history_default_limit=int(os.getenv("BULKGRANT_HISTORY_DEFAULT_LIMIT", "20")),
            history_max_limit=int(os.getenv("BULKGRANT_HISTORY_MAX_LIMIT", "100")),
            temporal_address=os.getenv("BULKGRANT_TEMPORAL_ADDRESS", "localhost:7233"),
            temporal_namespace=os.getenv("BULKGRANT_TEMPORAL_NAMESPACE", "default"),
            temporal_task_queue=os.getenv("BULKGRANT_TEMPORAL_TASK_QUEUE", "bulkgrant"),
            temporal_workflow_execution_timeout_seconds=int(
                os.getenv("BULKGRANT_TEMPORAL_WORKFLOW_TIMEOUT", "86400")
            ),
            temporal_activity_timeout_seconds=int(
                os.getenv("BULKGRANT_TEMPORAL_ACTIVITY_TIMEOUT", "3600")
            ),
        )
