"""
Timezone-aware insight dispatcher.

The hourly insight-dispatch tick runs one sweep per insight kind. Each sweep
re-reads every candidate user, resolves their notification settings, and
enqueues one single-user job for each user whose local hour equals their
preferred hour. Nothing is cached between sweeps.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import ValidationError

from fortune.engagement.timezones import (
    DEFAULT_TIMEZONE,
    get_current_hour_in_timezone,
    parse_hour,
    resolve_timezone,
)
from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.constants import (
    INSIGHT_RETRY_DELAY_SECONDS,
    INSIGHT_RETRY_LIMIT,
    QUEUE_EVENING_INSIGHT_SINGLE,
    QUEUE_MORNING_INSIGHT_SINGLE,
)
from fortune.jobs.models import Job, JobOptions
from fortune.jobs.queue import JobQueue
from fortune.models.domain.user_domain import DispatchableUser, InsightKind, NotificationSettings
from fortune.repositories.user_repository import UserRepository

logger = get_logger(__name__)

SINGLE_QUEUE_BY_KIND: dict[str, str] = {
    "morning": QUEUE_MORNING_INSIGHT_SINGLE,
    "evening": QUEUE_EVENING_INSIGHT_SINGLE,
}


@dataclass(slots=True)
class DispatchResult:
    dispatched: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"dispatched": self.dispatched, "failed": self.failed}


class TimezoneDispatcher:
    def __init__(
        self,
        users: UserRepository,
        queue: JobQueue,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
    ):
        self.users = users
        self.queue = queue
        self.default_timezone = default_timezone

    async def find_users_for_insight_type(
        self, kind: InsightKind, now: datetime | None = None
    ) -> list[DispatchableUser]:
        """
        Users whose current local hour matches their preferred hour for `kind`.

        Raises:
            UserRepositoryError: when the candidate query fails
        """
        now = now or datetime.now(UTC)
        candidates = await self.users.list_dispatch_candidates()

        matching: list[DispatchableUser] = []
        for user in candidates:
            if not user.external_id:
                continue

            try:
                settings = NotificationSettings.from_raw(user.notification_settings)
            except ValidationError as e:
                logger.warning("Skipping user with malformed notification settings", user_id=user.id, error=str(e))
                continue
            if not settings.kind_enabled(kind):
                continue

            # Unknown names fall back to the default zone with a warning
            timezone = resolve_timezone(user.timezone, self.default_timezone).key
            preferred_hour = parse_hour(settings.time_for(kind))
            current_hour = get_current_hour_in_timezone(timezone, now, self.default_timezone)

            if current_hour == preferred_hour:
                matching.append(
                    DispatchableUser(
                        id=user.id,
                        timezone=timezone,
                        external_id=user.external_id,
                        display_name=user.display_name,
                        language_code=user.language_code,
                    )
                )

        logger.info(
            "Filtered users for insight dispatch",
            insight_type=kind,
            total_users=len(candidates),
            matching_users=len(matching),
        )
        return matching

    async def dispatch(self, kind: InsightKind, now: datetime | None = None) -> DispatchResult:
        """
        Enqueue one single-user insight job per matching user.

        A failed enqueue is counted and logged; it does not stop the sweep.
        A failed user query propagates so the dispatch job gets retried.
        """
        queue_name = SINGLE_QUEUE_BY_KIND[kind]
        result = DispatchResult()

        try:
            users = await self.find_users_for_insight_type(kind, now)
        except Exception as e:
            logger.error("Insight dispatch failed", insight_type=kind, error=str(e))
            raise

        if not users:
            logger.info("No users for insight dispatch", insight_type=kind)
            return result

        options = JobOptions(
            retry_limit=INSIGHT_RETRY_LIMIT,
            retry_delay_seconds=INSIGHT_RETRY_DELAY_SECONDS,
        )
        for user in users:
            payload = {
                "user_id": user.id,
                "timezone": user.timezone,
                "external_id": user.external_id,
                "display_name": user.display_name,
                "language_code": user.language_code,
            }
            try:
                job_id = await self.queue.enqueue(queue_name, payload, options)
            except Exception as e:
                result.failed += 1
                logger.error("Error dispatching insight job", insight_type=kind, user_id=user.id, error=str(e))
                continue

            if job_id:
                result.dispatched += 1
                logger.debug(
                    "Insight job dispatched",
                    insight_type=kind,
                    user_id=user.id,
                    job_id=job_id,
                    timezone=user.timezone,
                )
            else:
                result.failed += 1
                logger.warning("Failed to dispatch insight job", insight_type=kind, user_id=user.id)

        logger.info("Insight dispatch completed", insight_type=kind, total=len(users), **result.to_dict())
        return result

    async def dispatch_morning_insights(self, now: datetime | None = None) -> DispatchResult:
        return await self.dispatch("morning", now)

    async def dispatch_evening_insights(self, now: datetime | None = None) -> DispatchResult:
        return await self.dispatch("evening", now)

    async def run_hourly_sweep(self, job: Job) -> None:
        """
        Handler for the hourly insight-dispatch schedule.

        Local hours are evaluated at the job's creation time so a delayed or
        retried sweep still targets the slot it was fired for. Each kind runs
        even when the other fails; the first failure is re-raised afterwards.
        """
        now = job.created_at or datetime.now(UTC)
        results: dict[str, dict] = {}
        errors: list[Exception] = []

        for kind in ("morning", "evening"):
            try:
                results[kind] = (await self.dispatch(kind, now)).to_dict()
            except Exception as e:
                results[kind] = {"error": str(e)}
                errors.append(e)

        logger.info("Hourly insight sweep finished", job_id=job.id, slot=now.isoformat(), **results)
        if errors:
            raise errors[0]
