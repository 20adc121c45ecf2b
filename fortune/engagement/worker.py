"""
Engagement worker.

Batch handlers (inactive-reminder, weekly-checkin, daily-fortune) find their
recipients, send one message each with a fixed delay between sends, and
append a ledger entry after every successful send. A failed send is counted
and skipped; the batch job still completes so recipients already messaged
are not messaged again by a retry.

Single-user insight handlers re-raise send failures so the queue retries
that one job.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, ValidationError

from fortune.engagement.ledger import EngagementLedger, MessageType
from fortune.engagement.triggers import (
    create_daily_fortune_message,
    create_inactive_reminder_message,
    create_weekly_checkin_message,
    find_daily_fortune_users,
    find_inactive_users,
    find_weekly_checkin_users,
)
from fortune.engagement.triggers.insights import generate_insight
from fortune.engagement.triggers.static_pools import DAILY_FORTUNE_FRAME, FALLBACK_LANGUAGE
from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.errors import PayloadValidationError
from fortune.jobs.models import Job
from fortune.models.domain.user_domain import DispatchableUser, InsightKind, Recipient
from fortune.repositories.user_repository import UserRepository
from fortune.services.llm_service import LLMService
from fortune.services.telegram_client import TelegramClient

logger = get_logger(__name__)

# Telegram allows ~30 msg/s to different chats; 100ms keeps us at 10/s
RATE_LIMIT_DELAY_SECONDS = 0.1

MessageBuilder = Callable[[Recipient], Awaitable[str]]

INSIGHT_MESSAGE_TYPES: dict[str, MessageType] = {
    "morning": MessageType.MORNING_INSIGHT,
    "evening": MessageType.EVENING_INSIGHT,
}


class BatchResult:
    """Counters for one batch run."""

    def __init__(self, message_type: MessageType):
        self.message_type = message_type
        self.total = 0
        self.success = 0
        self.failed = 0
        self.errors: list[dict] = []

    def record_success(self, recipient_id: str) -> None:
        self.success += 1

    def record_failure(self, recipient_id: str, error: Exception) -> None:
        self.failed += 1
        self.errors.append({"recipient_id": recipient_id, "error": str(error)})

    def to_dict(self) -> dict:
        return {
            "message_type": str(self.message_type),
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
        }


class InsightJobPayload(BaseModel):
    """Payload written by the timezone dispatcher."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    timezone: str
    external_id: int
    display_name: str | None = None
    language_code: str = "ru"

    def to_user(self) -> DispatchableUser:
        return DispatchableUser(
            id=self.user_id,
            timezone=self.timezone,
            external_id=self.external_id,
            display_name=self.display_name,
            language_code=self.language_code,
        )


class EngagementWorker:
    def __init__(
        self,
        channel: TelegramClient,
        ledger: EngagementLedger,
        users: UserRepository,
        llm: LLMService | None = None,
        *,
        rate_limit_seconds: float = RATE_LIMIT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.channel = channel
        self.ledger = ledger
        self.users = users
        self.llm = llm
        self.rate_limit_seconds = rate_limit_seconds
        self._sleep = sleep

    async def send_batch(
        self,
        message_type: MessageType,
        recipients: list[Recipient],
        build_message: MessageBuilder,
    ) -> BatchResult:
        """Send to every recipient in order. One failure never stops the loop."""
        result = BatchResult(message_type)
        result.total = len(recipients)

        for index, recipient in enumerate(recipients):
            try:
                text = await build_message(recipient)
                await self.channel.send_message(recipient.external_id, text, parse_mode="HTML")
            except Exception as e:
                result.record_failure(recipient.recipient_id, e)
                logger.warning(
                    "Failed to send engagement message",
                    message_type=str(message_type),
                    recipient_id=recipient.recipient_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                await self.ledger.record_sent(recipient.recipient_id, message_type)
                result.record_success(recipient.recipient_id)
                logger.debug(
                    "Engagement message sent",
                    message_type=str(message_type),
                    recipient_id=recipient.recipient_id,
                )

            if index < len(recipients) - 1:
                await self._sleep(self.rate_limit_seconds)

        logger.info("Engagement batch completed", **result.to_dict())
        return result

    async def _run_batch(
        self,
        job: Job,
        message_type: MessageType,
        find_recipients: Callable[[], Awaitable[list[Recipient]]],
        build_message: MessageBuilder,
    ) -> BatchResult:
        job_logger = logger.bind(job_id=job.id, message_type=str(message_type))
        job_logger.info("Starting engagement batch")

        try:
            recipients = await find_recipients()
        except Exception as e:
            job_logger.error("Engagement batch failed to load recipients", error=str(e))
            raise

        if not recipients:
            job_logger.info("No recipients for engagement batch")
            return BatchResult(message_type)

        job_logger.info("Sending engagement batch", count=len(recipients))
        return await self.send_batch(message_type, recipients, build_message)

    async def process_inactive_reminder(self, job: Job) -> BatchResult:
        async def build(recipient: Recipient) -> str:
            return await create_inactive_reminder_message(
                recipient.display_name, llm=self.llm, language_code=recipient.language_code
            )

        return await self._run_batch(
            job,
            MessageType.INACTIVE_REMINDER,
            lambda: find_inactive_users(self.users, self.ledger),
            build,
        )

    async def process_weekly_checkin(self, job: Job) -> BatchResult:
        async def build(recipient: Recipient) -> str:
            return await create_weekly_checkin_message(
                recipient.display_name, llm=self.llm, language_code=recipient.language_code
            )

        return await self._run_batch(
            job,
            MessageType.WEEKLY_CHECKIN,
            lambda: find_weekly_checkin_users(self.users, self.ledger),
            build,
        )

    async def process_daily_fortune(self, job: Job) -> BatchResult:
        # One text per framed language, generated on first use
        messages: dict[str, str] = {}

        async def build(recipient: Recipient) -> str:
            language = recipient.language_code
            if language not in DAILY_FORTUNE_FRAME:
                language = FALLBACK_LANGUAGE
            if language not in messages:
                messages[language] = await create_daily_fortune_message(llm=self.llm, language_code=language)
            return messages[language]

        return await self._run_batch(
            job,
            MessageType.DAILY_FORTUNE,
            lambda: find_daily_fortune_users(self.users, self.ledger),
            build,
        )

    async def process_insight_single(
        self, kind: InsightKind, job: Job, now: datetime | None = None
    ) -> bool:
        """
        Send one morning/evening insight.

        Returns False when the recipient already got this insight during
        their local day. Send failures propagate for queue-level retry.
        """
        message_type = INSIGHT_MESSAGE_TYPES[kind]
        try:
            payload = InsightJobPayload.model_validate(job.payload)
        except ValidationError as e:
            raise PayloadValidationError(f"Invalid {kind} insight payload: {e}") from e

        job_logger = logger.bind(job_id=job.id, insight_type=kind, user_id=payload.user_id)
        now = now or datetime.now(UTC)

        if await self.ledger.has_sent_today(payload.user_id, message_type, payload.timezone, now):
            job_logger.info("Insight already sent today, skipping")
            return False

        user = payload.to_user()
        insight = await generate_insight(kind, user, self.llm, today=now)

        try:
            await self.channel.send_message(user.external_id, insight.text, parse_mode="HTML")
        except Exception as e:
            job_logger.error("Failed to send insight", error=str(e), error_type=type(e).__name__)
            raise

        await self.ledger.record_sent(user.id, message_type, now)
        job_logger.info("Insight sent", source=insight.source, tokens_used=insight.tokens_used)
        return True

    async def process_morning_insight(self, job: Job) -> None:
        await self.process_insight_single("morning", job)

    async def process_evening_insight(self, job: Job) -> None:
        await self.process_insight_single("evening", job)
