"""Inactive reminder: users who have not been seen for a week."""

from datetime import UTC, datetime, timedelta

from fortune.engagement.ledger import EngagementLedger, MessageType
from fortune.engagement.triggers.base import exclude_sent_today, generate_with_fallback, language_instruction
from fortune.engagement.triggers.static_pools import (
    INACTIVE_REMINDER_POOL,
    default_name,
    pick_for_day,
    pool_for,
)
from fortune.infrastructure.observability.logging import get_logger
from fortune.models.domain.user_domain import Recipient
from fortune.repositories.user_repository import UserRepository
from fortune.services.llm_service import LLMService

logger = get_logger(__name__)

INACTIVE_DAYS = 7


async def find_inactive_users(
    users: UserRepository,
    ledger: EngagementLedger,
    *,
    now: datetime | None = None,
    inactive_days: int = INACTIVE_DAYS,
) -> list[Recipient]:
    now = now or datetime.now(UTC)
    candidates = await users.list_inactive_candidates(now - timedelta(days=inactive_days))
    if not candidates:
        logger.info("No inactive users found")
        return []

    recipients = await exclude_sent_today(candidates, ledger, MessageType.INACTIVE_REMINDER, now)
    logger.info("Found inactive users", count=len(recipients), candidates=len(candidates))
    return recipients


async def create_inactive_reminder_message(
    name: str | None,
    *,
    llm: LLMService | None = None,
    language_code: str = "ru",
    today: datetime | None = None,
) -> str:
    name = name or default_name(language_code)
    fallback = pick_for_day(pool_for(INACTIVE_REMINDER_POOL, language_code), today).format(name=name)

    messages = [
        {
            "role": "system",
            "content": "You write short, warm reminders inviting a user back to a coffee "
            "grounds fortune-telling bot. " + language_instruction(language_code),
        },
        {"role": "user", "content": f"User name: {name}. They have been away for a week."},
    ]
    generated = await generate_with_fallback(llm, messages, fallback, trigger="inactive-reminder")
    return generated.text
