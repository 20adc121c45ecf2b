"""
Domain models for the job queue.

Plain dataclasses shared by the queue, its store and the handlers. Handlers
only read jobs; every state transition goes through the queue.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from fortune.jobs.constants import DEFAULT_RETRY_DELAY_SECONDS, JOB_TIMEOUT_SECONDS


class JobState(StrEnum):
    CREATED = "created"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.EXPIRED})


@dataclass(slots=True)
class Job:
    """A job_queue row."""

    id: str
    queue_name: str
    payload: dict[str, Any]
    state: JobState
    retry_count: int
    retry_limit: int
    retry_delay_seconds: int
    expire_after_seconds: int
    created_at: datetime
    retry_backoff: bool = True
    priority: int = 0
    start_after: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    output: dict[str, Any] | None = None

    @property
    def attempt(self) -> int:
        """1-based number of the processing attempt currently running."""
        return self.retry_count + 1

    @property
    def max_attempts(self) -> int:
        return max(1, self.retry_limit)


@dataclass(slots=True)
class JobOptions:
    """Per-enqueue options. expire_after_seconds defaults to the global job timeout."""

    retry_limit: int = 0
    retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SECONDS
    retry_backoff: bool = True
    expire_after_seconds: int = JOB_TIMEOUT_SECONDS
    priority: int = 0
    start_after: datetime | None = None


@dataclass(slots=True, frozen=True)
class ScheduleDescriptor:
    """Cron-triggered recurring job. Fires with an empty payload."""

    queue_name: str
    cron_expression: str
    timezone: str = "UTC"
    description: str = ""
    options: JobOptions = field(default_factory=JobOptions)


@dataclass(slots=True)
class WorkerOptions:
    batch_size: int = 1
    polling_interval_seconds: float = 2.0
