"""
Durable PostgreSQL-backed job queue.

Producers call enqueue(); workers are bound with register_worker() and poll
their queue in independent asyncio tasks. Recurring cron schedules are
persisted in job_schedule and fired by a scheduler loop; a slot fires at
most once across processes.

Delivery is at-least-once: a handler returns normally on success and raises
to signal failure. The queue classifies the error and either schedules a
retry (with backoff) or closes the job.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from fortune.infrastructure.observability.logging import get_logger, log_job_event
from fortune.jobs.constants import (
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_RETRY_LIMIT,
    JOB_TIMEOUT_SECONDS,
    QUEUE_ANALYZE_PHOTO,
    QUEUE_CHAT_REPLY,
    QUEUE_SEND_MESSAGE,
    SEND_MESSAGE_RETRY_DELAY_SECONDS,
)
from fortune.jobs.errors import describe_error, is_retryable
from fortune.jobs.models import Job, JobOptions, JobState, ScheduleDescriptor, WorkerOptions
from fortune.jobs.store import JobStore

logger = get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]
Clock = Callable[[], datetime]

MAX_RETRY_DELAY_SECONDS = 60 * 60


class QueueUnavailableError(RuntimeError):
    """Raised when the queue backend cannot be reached at startup."""


def utc_now() -> datetime:
    return datetime.now(UTC)


def compute_retry_delay(job: Job) -> int:
    """Seconds to wait before the next attempt; doubles per attempt with backoff."""
    delay = job.retry_delay_seconds
    if job.retry_backoff:
        delay = job.retry_delay_seconds * (2**job.retry_count)
    return min(delay, MAX_RETRY_DELAY_SECONDS)


def latest_cron_slot(cron_expression: str, timezone: str, now: datetime) -> datetime:
    """Most recent cron fire time at or before `now`, as an aware UTC datetime."""
    tz = ZoneInfo(timezone)
    base = now.astimezone(tz) + timedelta(seconds=1)
    previous = croniter(cron_expression, base).get_prev(datetime)
    return previous.astimezone(UTC)


class JobQueue:
    """
    Queue facade used by producers, workers and the scheduler.

    Owns every job state transition; handlers never touch job rows.
    """

    def __init__(
        self,
        store: JobStore,
        *,
        clock: Clock = utc_now,
        scheduler_tick_seconds: float = 30.0,
        default_polling_interval_seconds: float = 2.0,
    ):
        self.store = store
        self.clock = clock
        self.scheduler_tick_seconds = scheduler_tick_seconds
        self.default_polling_interval_seconds = default_polling_interval_seconds
        self._started = False
        self._stopping = False
        self._worker_tasks: dict[str, asyncio.Task] = {}
        self._worker_queues: dict[str, str] = {}
        self._scheduler_task: asyncio.Task | None = None
        self._schedules: dict[str, ScheduleDescriptor] = {}

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create queue tables and verify the backend. Fails loudly."""
        if self._started:
            return

        try:
            await self.store.ensure_schema()
            if not await self.store.ping():
                raise QueueUnavailableError("Job store ping returned an unexpected result")
        except QueueUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to start job queue", error=str(e), error_type=type(e).__name__)
            raise QueueUnavailableError(f"Job queue backend unavailable: {e}") from e

        self._started = True
        self._stopping = False
        logger.info("Job queue started")

    async def stop(self) -> None:
        """Cancel worker and scheduler tasks and wait for them to unwind."""
        if not self._started:
            return

        self._stopping = True
        tasks = list(self._worker_tasks.values())
        if self._scheduler_task:
            tasks.append(self._scheduler_task)

        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.warning("Queue task ended with error during shutdown", error=str(result))

        self._worker_tasks.clear()
        self._worker_queues.clear()
        self._scheduler_task = None
        self._started = False
        logger.info("Job queue stopped", tasks_stopped=len(tasks))

    # ------------------------------------------------------------------
    # Producing
    # ------------------------------------------------------------------

    async def enqueue(
        self, queue_name: str, payload: dict[str, Any], options: JobOptions | None = None
    ) -> str | None:
        """
        Persist a new job.

        Returns the job id, or None when the backend is unavailable. Never
        raises for backend problems: callers log the None and carry on.
        """
        options = options or JobOptions()
        try:
            job_id = await self.store.insert_job(queue_name, payload, options, self.clock())
        except Exception as e:
            logger.error(
                "Failed to enqueue job",
                queue=queue_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.debug("Job enqueued", queue=queue_name, job_id=job_id)
        return job_id

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    async def register_worker(
        self,
        queue_name: str,
        handler: JobHandler,
        *,
        batch_size: int = 1,
        polling_interval_seconds: float | None = None,
    ) -> str:
        """Spawn a polling task for `queue_name` and return its worker id."""
        if not self._started:
            raise RuntimeError("Job queue not started. Call start() first.")

        options = WorkerOptions(
            batch_size=max(1, batch_size),
            polling_interval_seconds=(
                polling_interval_seconds
                if polling_interval_seconds is not None
                else self.default_polling_interval_seconds
            ),
        )
        worker_id = f"{queue_name}:{uuid.uuid4().hex[:8]}"
        self._worker_tasks[worker_id] = asyncio.create_task(
            self._worker_loop(worker_id, queue_name, handler, options),
            name=f"worker-{worker_id}",
        )
        self._worker_queues[worker_id] = queue_name

        logger.info(
            "Worker registered",
            worker_id=worker_id,
            queue=queue_name,
            batch_size=options.batch_size,
            polling_interval_seconds=options.polling_interval_seconds,
        )
        return worker_id

    async def _worker_loop(
        self, worker_id: str, queue_name: str, handler: JobHandler, options: WorkerOptions
    ) -> None:
        while not self._stopping:
            try:
                processed = await self.poll_once(queue_name, handler, options.batch_size)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Worker poll failed",
                    worker_id=worker_id,
                    queue=queue_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                processed = 0

            if processed == 0:
                await asyncio.sleep(options.polling_interval_seconds)

    async def poll_once(self, queue_name: str, handler: JobHandler, batch_size: int = 1) -> int:
        """Claim up to batch_size jobs and run them one at a time."""
        jobs = await self.store.claim_jobs(queue_name, batch_size, self.clock())
        for job in jobs:
            await self.process_job(job, handler)
        return len(jobs)

    async def process_job(self, job: Job, handler: JobHandler) -> JobState:
        """
        Run the handler for one claimed job and record the outcome.

        Returns the state the job is left in (CREATED when a retry was
        scheduled).
        """
        job_logger = logger.bind(job_id=job.id, queue=job.queue_name, attempt=job.attempt)
        job_logger.info("Processing job")
        started = time.monotonic()
        deadline = None

        try:
            async with asyncio.timeout(job.expire_after_seconds) as deadline:
                await handler(job)

        except TimeoutError as e:
            if deadline is not None and deadline.expired():
                return await self._expire(job, started)
            return await self._handle_failure(job, e, started)

        except Exception as e:
            return await self._handle_failure(job, e, started)

        await self.store.complete_job(job.id, None, self.clock())
        log_job_event(job.queue_name, job.id, "completed", (time.monotonic() - started) * 1000)
        return JobState.COMPLETED

    async def _expire(self, job: Job, started: float) -> JobState:
        output = {
            "error": f"Job exceeded {job.expire_after_seconds}s and was expired",
            "kind": "expired",
        }
        await self.store.expire_job(job.id, output, self.clock())
        log_job_event(
            job.queue_name, job.id, "expired", (time.monotonic() - started) * 1000, output["error"]
        )
        return JobState.EXPIRED

    async def _handle_failure(self, job: Job, error: Exception, started: float) -> JobState:
        job_logger = logger.bind(job_id=job.id, queue=job.queue_name, attempt=job.attempt)
        output = describe_error(error)
        now = self.clock()
        duration_ms = (time.monotonic() - started) * 1000

        if not is_retryable(error):
            job_logger.error(
                "Non-retryable error, job will not be retried",
                error=output["error"],
                error_type=output["error_type"],
            )
            output["retryable"] = False
            await self.store.complete_job(job.id, output, now)
            log_job_event(job.queue_name, job.id, "rejected", duration_ms, output["error"])
            return JobState.COMPLETED

        output["retryable"] = True
        if job.attempt < job.max_attempts:
            delay = compute_retry_delay(job)
            await self.store.retry_job(
                job.id, job.retry_count + 1, now + timedelta(seconds=delay), output
            )
            job_logger.warning(
                "Job failed, retry scheduled",
                error=output["error"],
                retry_in_seconds=delay,
                attempts_left=job.max_attempts - job.attempt,
            )
            return JobState.CREATED

        await self.store.fail_job(job.id, output, now)
        job_logger.error(
            "Job failed after exhausting retries",
            error=output["error"],
            attempts=job.attempt,
        )
        log_job_event(job.queue_name, job.id, "failed", duration_ms, output["error"])
        return JobState.FAILED

    # ------------------------------------------------------------------
    # Recurring schedules
    # ------------------------------------------------------------------

    async def schedule_recurring(self, descriptor: ScheduleDescriptor) -> None:
        """Persist a cron schedule. Raises ValueError for a bad cron or timezone."""
        if not croniter.is_valid(descriptor.cron_expression):
            raise ValueError(f"Invalid cron expression: {descriptor.cron_expression!r}")
        try:
            ZoneInfo(descriptor.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {descriptor.timezone!r}") from e

        await self.store.upsert_schedule(descriptor, self.clock())
        self._schedules[descriptor.queue_name] = descriptor
        logger.info(
            "Recurring job scheduled",
            queue=descriptor.queue_name,
            cron=descriptor.cron_expression,
            tz=descriptor.timezone,
        )

    async def run_scheduler_tick(self, now: datetime | None = None) -> list[str]:
        """Enqueue one job for every schedule whose latest slot has not fired yet."""
        now = now or self.clock()
        fired: list[str] = []

        for row in await self.store.list_schedules():
            queue_name = row["queue_name"]
            try:
                slot = latest_cron_slot(row["cron_expression"], row["timezone"], now)
            except (ValueError, KeyError, ZoneInfoNotFoundError) as e:
                logger.error("Skipping malformed schedule", queue=queue_name, error=str(e))
                continue

            last_fired = row.get("last_fired_at")
            if last_fired is not None and slot <= last_fired:
                continue

            if not await self.store.claim_schedule_slot(queue_name, slot):
                continue  # another process fired this slot

            options = JobOptions(**(row.get("options") or {}))
            job_id = await self.enqueue(queue_name, {}, options)
            if job_id:
                fired.append(queue_name)
                logger.info("Scheduled job fired", queue=queue_name, slot=slot.isoformat(), job_id=job_id)
            else:
                logger.error("Scheduled job could not be enqueued", queue=queue_name, slot=slot.isoformat())
                try:
                    await self.store.release_schedule_slot(queue_name, slot, last_fired)
                except Exception as e:
                    logger.error("Failed to release schedule slot", queue=queue_name, error=str(e))

        return fired

    def start_scheduler(self) -> None:
        """Start the background loop that fires cron schedules."""
        if not self._started:
            raise RuntimeError("Job queue not started. Call start() first.")
        if self._scheduler_task is None:
            self._scheduler_task = asyncio.create_task(self._scheduler_loop(), name="job-scheduler")
            logger.info("Job scheduler loop started", tick_seconds=self.scheduler_tick_seconds)

    async def _scheduler_loop(self) -> None:
        while not self._stopping:
            try:
                await self.run_scheduler_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Scheduler tick failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self.scheduler_tick_seconds)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        if not self._started:
            return {"healthy": False, "service": "job_queue", "error": "Queue not started"}
        try:
            healthy = await self.store.ping()
        except Exception as e:
            return {"healthy": False, "service": "job_queue", "error": str(e)}

        return {
            "healthy": healthy,
            "service": "job_queue",
            "workers": sorted(set(self._worker_queues.values())),
            "schedules": sorted(self._schedules),
            "scheduler_running": self._scheduler_task is not None,
        }


# ----------------------------------------------------------------------
# Producer shortcuts for the direct-enqueue queues
# ----------------------------------------------------------------------


async def send_analyze_photo_job(queue: JobQueue, data: dict[str, Any]) -> str | None:
    return await queue.enqueue(
        QUEUE_ANALYZE_PHOTO,
        data,
        JobOptions(
            retry_limit=DEFAULT_RETRY_LIMIT,
            retry_delay_seconds=DEFAULT_RETRY_DELAY_SECONDS,
            expire_after_seconds=JOB_TIMEOUT_SECONDS,
        ),
    )


async def send_chat_reply_job(queue: JobQueue, data: dict[str, Any]) -> str | None:
    return await queue.enqueue(
        QUEUE_CHAT_REPLY,
        data,
        JobOptions(
            retry_limit=DEFAULT_RETRY_LIMIT,
            retry_delay_seconds=DEFAULT_RETRY_DELAY_SECONDS,
            expire_after_seconds=JOB_TIMEOUT_SECONDS,
        ),
    )


async def send_message_job(queue: JobQueue, data: dict[str, Any]) -> str | None:
    return await queue.enqueue(
        QUEUE_SEND_MESSAGE,
        data,
        JobOptions(
            retry_limit=DEFAULT_RETRY_LIMIT,
            retry_delay_seconds=SEND_MESSAGE_RETRY_DELAY_SECONDS,
            expire_after_seconds=JOB_TIMEOUT_SECONDS,
        ),
    )
