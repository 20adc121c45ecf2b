"""
PostgreSQL persistence for the job queue.

The store only persists state; retry/backoff decisions are made by
JobQueue. Claiming relies on FOR UPDATE SKIP LOCKED so that the database
is the single arbiter of which worker owns an active job.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from fortune.db.helpers import with_db_retry
from fortune.db.pool import DatabasePoolManager
from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.models import Job, JobOptions, JobState, ScheduleDescriptor

logger = get_logger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS job_queue (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        queue_name TEXT NOT NULL,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        state TEXT NOT NULL DEFAULT 'created'
            CHECK (state IN ('created', 'active', 'completed', 'failed', 'expired')),
        priority INTEGER NOT NULL DEFAULT 0,
        retry_count INTEGER NOT NULL DEFAULT 0,
        retry_limit INTEGER NOT NULL DEFAULT 0,
        retry_delay_seconds INTEGER NOT NULL DEFAULT 0,
        retry_backoff BOOLEAN NOT NULL DEFAULT TRUE,
        expire_after_seconds INTEGER NOT NULL,
        start_after TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ,
        output JSONB
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_job_queue_fetch
        ON job_queue (queue_name, priority DESC, created_at)
        WHERE state = 'created'
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_job_queue_active
        ON job_queue (started_at)
        WHERE state = 'active'
    """,
    """
    CREATE TABLE IF NOT EXISTS job_schedule (
        queue_name TEXT PRIMARY KEY,
        cron_expression TEXT NOT NULL,
        timezone TEXT NOT NULL DEFAULT 'UTC',
        description TEXT NOT NULL DEFAULT '',
        options JSONB NOT NULL DEFAULT '{}'::jsonb,
        last_fired_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)

_JOB_COLUMNS = (
    "id, queue_name, payload, state, priority, retry_count, retry_limit, "
    "retry_delay_seconds, retry_backoff, expire_after_seconds, start_after, "
    "created_at, started_at, completed_at, output"
)


def row_to_job(row: dict[str, Any]) -> Job:
    return Job(
        id=str(row["id"]),
        queue_name=row["queue_name"],
        payload=row.get("payload") or {},
        state=JobState(row["state"]),
        retry_count=row["retry_count"],
        retry_limit=row["retry_limit"],
        retry_delay_seconds=row["retry_delay_seconds"],
        retry_backoff=row.get("retry_backoff", True),
        expire_after_seconds=row["expire_after_seconds"],
        priority=row.get("priority", 0),
        start_after=row.get("start_after"),
        created_at=row["created_at"],
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
        output=row.get("output"),
    )


def options_to_dict(options: JobOptions) -> dict[str, Any]:
    return {
        "retry_limit": options.retry_limit,
        "retry_delay_seconds": options.retry_delay_seconds,
        "retry_backoff": options.retry_backoff,
        "expire_after_seconds": options.expire_after_seconds,
        "priority": options.priority,
    }


class JobStore(ABC):
    """Persistence contract used by JobQueue and StaleLockReaper."""

    @abstractmethod
    async def ensure_schema(self) -> None: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def insert_job(
        self, queue_name: str, payload: dict[str, Any], options: JobOptions, now: datetime
    ) -> str: ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None: ...

    @abstractmethod
    async def claim_jobs(self, queue_name: str, batch_size: int, now: datetime) -> list[Job]: ...

    @abstractmethod
    async def complete_job(self, job_id: str, output: dict | None, now: datetime) -> bool: ...

    @abstractmethod
    async def retry_job(
        self, job_id: str, retry_count: int, start_after: datetime, output: dict
    ) -> bool: ...

    @abstractmethod
    async def fail_job(self, job_id: str, output: dict, now: datetime) -> bool: ...

    @abstractmethod
    async def expire_job(self, job_id: str, output: dict, now: datetime) -> bool: ...

    @abstractmethod
    async def fail_stale_active(
        self, started_before: datetime, output: dict, now: datetime
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def upsert_schedule(self, descriptor: ScheduleDescriptor, now: datetime) -> None: ...

    @abstractmethod
    async def list_schedules(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def claim_schedule_slot(self, queue_name: str, fire_at: datetime) -> bool: ...

    @abstractmethod
    async def release_schedule_slot(
        self, queue_name: str, fire_at: datetime, previous: datetime | None
    ) -> None: ...


class PostgresJobStore(JobStore):
    """JobStore over the shared Postgres pool."""

    def __init__(self, db: DatabasePoolManager):
        self.db = db

    async def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            await self.db.execute(statement)
        logger.debug("Job queue schema ensured")

    async def ping(self) -> bool:
        return await self.db.fetch_val("SELECT 1") == 1

    @with_db_retry(max_retries=2)
    async def insert_job(
        self, queue_name: str, payload: dict[str, Any], options: JobOptions, now: datetime
    ) -> str:
        row = await self.db.fetch_one(
            """
            INSERT INTO job_queue (
                queue_name, payload, priority, retry_limit, retry_delay_seconds,
                retry_backoff, expire_after_seconds, start_after, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                queue_name,
                Jsonb(payload),
                options.priority,
                options.retry_limit,
                options.retry_delay_seconds,
                options.retry_backoff,
                options.expire_after_seconds,
                options.start_after or now,
                now,
            ),
        )
        return str(row["id"])

    async def get_job(self, job_id: str) -> Job | None:
        row = await self.db.fetch_one(
            f"SELECT {_JOB_COLUMNS} FROM job_queue WHERE id = %s", (job_id,)
        )
        return row_to_job(row) if row else None

    async def claim_jobs(self, queue_name: str, batch_size: int, now: datetime) -> list[Job]:
        rows = await self.db.fetch_all(
            f"""
            WITH next_jobs AS (
                SELECT id FROM job_queue
                WHERE queue_name = %s
                  AND state = 'created'
                  AND start_after <= %s
                ORDER BY priority DESC, created_at
                LIMIT %s
                FOR UPDATE SKIP LOCKED
            )
            UPDATE job_queue AS j
            SET state = 'active', started_at = %s
            FROM next_jobs
            WHERE j.id = next_jobs.id
            RETURNING {", ".join("j." + c.strip() for c in _JOB_COLUMNS.split(","))}
            """,
            (queue_name, now, batch_size, now),
        )
        return [row_to_job(row) for row in rows]

    async def _finish(self, job_id: str, state: JobState, output: dict | None, now: datetime) -> bool:
        affected = await self.db.execute(
            """
            UPDATE job_queue
            SET state = %s, completed_at = %s, output = %s
            WHERE id = %s AND state = 'active'
            """,
            (state.value, now, Jsonb(output) if output is not None else None, job_id),
        )
        return affected == 1

    async def complete_job(self, job_id: str, output: dict | None, now: datetime) -> bool:
        return await self._finish(job_id, JobState.COMPLETED, output, now)

    async def fail_job(self, job_id: str, output: dict, now: datetime) -> bool:
        return await self._finish(job_id, JobState.FAILED, output, now)

    async def expire_job(self, job_id: str, output: dict, now: datetime) -> bool:
        return await self._finish(job_id, JobState.EXPIRED, output, now)

    async def retry_job(
        self, job_id: str, retry_count: int, start_after: datetime, output: dict
    ) -> bool:
        affected = await self.db.execute(
            """
            UPDATE job_queue
            SET state = 'created', retry_count = %s, start_after = %s,
                started_at = NULL, output = %s
            WHERE id = %s AND state = 'active'
            """,
            (retry_count, start_after, Jsonb(output), job_id),
        )
        return affected == 1

    async def fail_stale_active(
        self, started_before: datetime, output: dict, now: datetime
    ) -> list[dict[str, Any]]:
        return await self.db.fetch_all(
            """
            UPDATE job_queue
            SET state = 'failed',
                completed_at = %s,
                output = %s
            WHERE state = 'active'
              AND started_at < %s
            RETURNING id, queue_name, started_at
            """,
            (now, Jsonb(output), started_before),
        )

    async def upsert_schedule(self, descriptor: ScheduleDescriptor, now: datetime) -> None:
        # New schedules start counting from now so past slots are not replayed
        await self.db.execute(
            """
            INSERT INTO job_schedule (
                queue_name, cron_expression, timezone, description, options,
                last_fired_at, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (queue_name) DO UPDATE
            SET cron_expression = EXCLUDED.cron_expression,
                timezone = EXCLUDED.timezone,
                description = EXCLUDED.description,
                options = EXCLUDED.options,
                updated_at = EXCLUDED.updated_at
            """,
            (
                descriptor.queue_name,
                descriptor.cron_expression,
                descriptor.timezone,
                descriptor.description,
                Jsonb(options_to_dict(descriptor.options)),
                now,
                now,
                now,
            ),
        )

    async def list_schedules(self) -> list[dict[str, Any]]:
        return await self.db.fetch_all(
            """
            SELECT queue_name, cron_expression, timezone, options, last_fired_at
            FROM job_schedule
            ORDER BY queue_name
            """
        )

    async def claim_schedule_slot(self, queue_name: str, fire_at: datetime) -> bool:
        affected = await self.db.execute(
            """
            UPDATE job_schedule
            SET last_fired_at = %s
            WHERE queue_name = %s
              AND (last_fired_at IS NULL OR last_fired_at < %s)
            """,
            (fire_at, queue_name, fire_at),
        )
        return affected == 1

    async def release_schedule_slot(
        self, queue_name: str, fire_at: datetime, previous: datetime | None
    ) -> None:
        """Undo a slot claim whose job could not be inserted."""
        await self.db.execute(
            """
            UPDATE job_schedule
            SET last_fired_at = %s
            WHERE queue_name = %s AND last_fired_at = %s
            """,
            (previous, queue_name, fire_at),
        )
