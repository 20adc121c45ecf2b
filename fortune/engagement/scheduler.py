"""Recurring schedules for engagement and maintenance queues."""

from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.constants import (
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_RETRY_LIMIT,
    INSIGHT_RETRY_DELAY_SECONDS,
    QUEUE_DAILY_FORTUNE,
    QUEUE_INACTIVE_REMINDER,
    QUEUE_INSIGHT_DISPATCH,
    QUEUE_STALE_LOCK_CLEANUP,
    QUEUE_WEEKLY_CHECKIN,
)
from fortune.jobs.models import JobOptions, ScheduleDescriptor
from fortune.jobs.queue import JobQueue

logger = get_logger(__name__)

ENGAGEMENT_TIMEZONE = "Europe/Moscow"

_BATCH_OPTIONS = JobOptions(retry_limit=DEFAULT_RETRY_LIMIT, retry_delay_seconds=DEFAULT_RETRY_DELAY_SECONDS)

SCHEDULES: tuple[ScheduleDescriptor, ...] = (
    ScheduleDescriptor(
        queue_name=QUEUE_INACTIVE_REMINDER,
        cron_expression="0 10 * * *",  # daily 10:00 MSK
        timezone=ENGAGEMENT_TIMEZONE,
        description="Check for inactive users (7+ days)",
        options=_BATCH_OPTIONS,
    ),
    ScheduleDescriptor(
        queue_name=QUEUE_WEEKLY_CHECKIN,
        cron_expression="0 10 * * 1",  # Monday 10:00 MSK
        timezone=ENGAGEMENT_TIMEZONE,
        description="Weekly check-in for all active users",
        options=_BATCH_OPTIONS,
    ),
    ScheduleDescriptor(
        queue_name=QUEUE_DAILY_FORTUNE,
        cron_expression="0 8 * * *",  # daily 08:00 MSK
        timezone=ENGAGEMENT_TIMEZONE,
        description="Daily fortune for users with spiritual goal",
        options=_BATCH_OPTIONS,
    ),
    ScheduleDescriptor(
        queue_name=QUEUE_INSIGHT_DISPATCH,
        cron_expression="0 * * * *",
        timezone="UTC",
        description="Hourly timezone-aware morning/evening insight dispatch",
        options=JobOptions(retry_limit=DEFAULT_RETRY_LIMIT, retry_delay_seconds=INSIGHT_RETRY_DELAY_SECONDS),
    ),
    ScheduleDescriptor(
        queue_name=QUEUE_STALE_LOCK_CLEANUP,
        cron_expression="*/10 * * * *",
        timezone="UTC",
        description="Fail jobs stuck in active state",
        options=JobOptions(retry_limit=1),
    ),
)


class SchedulerSetupError(RuntimeError):
    """Raised when a recurring schedule cannot be registered."""


async def setup_scheduler(
    queue: JobQueue, schedules: tuple[ScheduleDescriptor, ...] = SCHEDULES
) -> list[str]:
    """Persist every schedule. Returns the scheduled queue names."""
    logger.info("Setting up engagement schedulers", count=len(schedules))

    scheduled = []
    try:
        for descriptor in schedules:
            await queue.schedule_recurring(descriptor)
            scheduled.append(descriptor.queue_name)
    except Exception as e:
        logger.error("Failed to setup engagement schedulers", error=str(e))
        raise SchedulerSetupError(f"Failed to setup engagement schedulers: {e}") from e

    logger.info("All engagement schedulers configured successfully", queues=scheduled)
    return scheduled
