"""Monday morning check-in for users with notifications on."""

from datetime import datetime

from fortune.engagement.ledger import EngagementLedger, MessageType
from fortune.engagement.triggers.base import exclude_sent_today, generate_with_fallback, language_instruction
from fortune.engagement.triggers.static_pools import WEEKLY_CHECKIN_POOL, default_name, pick_for_day, pool_for
from fortune.infrastructure.observability.logging import get_logger
from fortune.models.domain.user_domain import Recipient
from fortune.repositories.user_repository import UserRepository
from fortune.services.llm_service import LLMService

logger = get_logger(__name__)


async def find_weekly_checkin_users(
    users: UserRepository, ledger: EngagementLedger, *, now: datetime | None = None
) -> list[Recipient]:
    candidates = await users.list_checkin_candidates()
    if not candidates:
        logger.info("No users for weekly check-in")
        return []

    recipients = await exclude_sent_today(candidates, ledger, MessageType.WEEKLY_CHECKIN, now)
    logger.info("Found users for weekly check-in", count=len(recipients))
    return recipients


async def create_weekly_checkin_message(
    name: str | None,
    *,
    llm: LLMService | None = None,
    language_code: str = "ru",
    today: datetime | None = None,
) -> str:
    name = name or default_name(language_code)
    fallback = pick_for_day(pool_for(WEEKLY_CHECKIN_POOL, language_code), today).format(name=name)

    messages = [
        {
            "role": "system",
            "content": "You write a short, upbeat start-of-week greeting for a coffee "
            "grounds fortune-telling bot. " + language_instruction(language_code),
        },
        {"role": "user", "content": f"User name: {name}."},
    ]
    generated = await generate_with_fallback(llm, messages, fallback, trigger="weekly-checkin")
    return generated.text
