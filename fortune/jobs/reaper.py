"""
Stale-lock reaper.

A worker that crashes mid-job leaves the row in 'active' forever. This
maintenance task fails every active job that started longer ago than the
threshold. It runs once at worker startup and on a recurring schedule; it
is never part of normal handler failure handling.
"""

from datetime import UTC, datetime, timedelta

from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.models import Job
from fortune.jobs.store import JobStore

logger = get_logger(__name__)

DEFAULT_MAX_AGE_MINUTES = 5
STALE_JOB_ERROR = "Job stale - cleared by cleanup task"


class StaleLockReaper:
    def __init__(self, store: JobStore, *, default_max_age_minutes: int = DEFAULT_MAX_AGE_MINUTES):
        self.store = store
        self.default_max_age_minutes = default_max_age_minutes
        self.last_run_time: datetime | None = None
        self.last_cleaned_count = 0

    async def run_once(self, max_age_minutes: int | None = None, now: datetime | None = None) -> int:
        """
        Fail active jobs started before now - max_age_minutes.

        Returns:
            Number of jobs transitioned to failed
        """
        max_age = max_age_minutes if max_age_minutes is not None else self.default_max_age_minutes
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=max_age)

        logger.info(
            "Cleaning up stale processing locks",
            max_age_minutes=max_age,
            cutoff=cutoff.isoformat(),
        )

        try:
            rows = await self.store.fail_stale_active(
                cutoff,
                {"error": STALE_JOB_ERROR, "cleaned_at": now.isoformat()},
                now,
            )
        except Exception as e:
            logger.error("Failed to cleanup stale processing locks", error=str(e))
            raise

        cleaned = len(rows)
        self.last_run_time = now
        self.last_cleaned_count = cleaned

        if cleaned:
            logger.warning("Cleaned up stale processing locks", cleaned_count=cleaned, max_age_minutes=max_age)
            for row in rows:
                logger.debug(
                    "Stale job cleaned up",
                    job_id=str(row["id"]),
                    queue=row["queue_name"],
                    started_at=row["started_at"].isoformat() if row.get("started_at") else None,
                )
        else:
            logger.debug("No stale processing locks found")

        return cleaned

    async def handle_job(self, job: Job) -> None:
        """Queue handler for the recurring stale-lock-cleanup schedule."""
        await self.run_once()

    def get_status(self) -> dict:
        return {
            "service": "stale_lock_reaper",
            "default_max_age_minutes": self.default_max_age_minutes,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_cleaned_count": self.last_cleaned_count,
        }
