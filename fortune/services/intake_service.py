"""
Request-path intake: turns a user photo or chat message into a queued job.

Checks maintenance mode and the credit gate before enqueueing. A failed
enqueue is reported back as queue_unavailable; the request path never
raises because the queue is down.
"""

from dataclasses import dataclass
from typing import Any

from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.queue import JobQueue, send_analyze_photo_job, send_chat_reply_job
from fortune.services.config_service import ConfigService
from fortune.services.credits_service import CreditsService

logger = get_logger(__name__)

REASON_MAINTENANCE = "maintenance"
REASON_INSUFFICIENT_CREDITS = "insufficient_credits"
REASON_QUEUE_UNAVAILABLE = "queue_unavailable"


@dataclass(slots=True)
class IntakeResult:
    accepted: bool
    job_id: str | None = None
    reason: str | None = None


class IntakeService:
    def __init__(self, queue: JobQueue, credits: CreditsService, config: ConfigService):
        self.queue = queue
        self.credits = credits
        self.config = config

    async def _gate(self, user_id: str, credit_type: str) -> IntakeResult | None:
        if await self.config.is_maintenance_mode():
            logger.info("Rejected job during maintenance", user_id=user_id)
            return IntakeResult(accepted=False, reason=REASON_MAINTENANCE)

        if not await self.credits.has_sufficient_credits(user_id, credit_type):
            logger.info("User has insufficient credits", user_id=user_id, credit_type=credit_type)
            return IntakeResult(accepted=False, reason=REASON_INSUFFICIENT_CREDITS)

        return None

    async def submit_photo(
        self,
        *,
        user_id: str,
        chat_id: int,
        image_url: str,
        persona: str = "arina",
        language: str = "ru",
        user_name: str | None = None,
    ) -> IntakeResult:
        credit_type = "cassandra" if persona == "cassandra" else "basic"
        rejected = await self._gate(user_id, credit_type)
        if rejected:
            return rejected

        data: dict[str, Any] = {
            "user_id": user_id,
            "chat_id": chat_id,
            "image_url": image_url,
            "persona": persona,
            "language": language,
            "user_name": user_name,
        }
        job_id = await send_analyze_photo_job(self.queue, data)
        if not job_id:
            logger.error("Failed to enqueue photo analysis job", user_id=user_id)
            return IntakeResult(accepted=False, reason=REASON_QUEUE_UNAVAILABLE)

        logger.info("Photo analysis job queued", job_id=job_id, user_id=user_id, persona=persona)
        return IntakeResult(accepted=True, job_id=job_id)

    async def submit_chat_message(
        self,
        *,
        user_id: str,
        chat_id: int,
        text: str,
        conversation_id: str | None = None,
        language: str = "ru",
    ) -> IntakeResult:
        rejected = await self._gate(user_id, "chat")
        if rejected:
            return rejected

        data: dict[str, Any] = {
            "user_id": user_id,
            "chat_id": chat_id,
            "text": text,
            "conversation_id": conversation_id,
            "language": language,
        }
        job_id = await send_chat_reply_job(self.queue, data)
        if not job_id:
            logger.error("Failed to enqueue chat reply job", user_id=user_id)
            return IntakeResult(accepted=False, reason=REASON_QUEUE_UNAVAILABLE)

        logger.info("Chat reply job queued", job_id=job_id, user_id=user_id, text_length=len(text))
        return IntakeResult(accepted=True, job_id=job_id)
