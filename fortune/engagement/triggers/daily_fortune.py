"""Daily fortune for users who picked the spiritual goal."""

from datetime import datetime

from fortune.engagement.ledger import EngagementLedger, MessageType
from fortune.engagement.triggers.base import exclude_sent_today, generate_with_fallback, language_instruction
from fortune.engagement.triggers.static_pools import (
    DAILY_FORTUNE_FRAME,
    DAILY_FORTUNE_POOL,
    FALLBACK_LANGUAGE,
    pick_for_day,
    pool_for,
)
from fortune.infrastructure.observability.logging import get_logger
from fortune.models.domain.user_domain import Recipient
from fortune.repositories.user_repository import UserRepository
from fortune.services.llm_service import LLMService

logger = get_logger(__name__)


async def find_daily_fortune_users(
    users: UserRepository, ledger: EngagementLedger, *, now: datetime | None = None
) -> list[Recipient]:
    candidates = await users.list_fortune_candidates()
    if not candidates:
        logger.info("No users for daily fortune")
        return []

    recipients = await exclude_sent_today(candidates, ledger, MessageType.DAILY_FORTUNE, now)
    logger.info("Found users for daily fortune", count=len(recipients))
    return recipients


def _frame(body: str, language_code: str) -> str:
    title, closing = DAILY_FORTUNE_FRAME.get(language_code, DAILY_FORTUNE_FRAME[FALLBACK_LANGUAGE])
    return f"{title}\n\n{body}\n\n{closing}"


async def create_daily_fortune_message(
    name: str | None = None,
    *,
    llm: LLMService | None = None,
    language_code: str = "ru",
    today: datetime | None = None,
) -> str:
    """
    Fortune of the day.

    Without a name the text is generic so one message can go to the whole
    batch.
    """
    language = language_code if language_code in DAILY_FORTUNE_FRAME else FALLBACK_LANGUAGE
    fallback = pick_for_day(pool_for(DAILY_FORTUNE_POOL, language), today)

    addressee = f"User name: {name}." if name else "Write it for every reader; do not use a name."
    messages = [
        {
            "role": "system",
            "content": "You write a two-sentence inspirational fortune of the day. "
            + language_instruction(language),
        },
        {"role": "user", "content": addressee},
    ]
    generated = await generate_with_fallback(llm, messages, fallback, trigger="daily-fortune")
    return _frame(generated.text, language)
