"""Shared plumbing for engagement triggers."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from fortune.engagement.ledger import EngagementLedger, MessageType
from fortune.infrastructure.observability.logging import get_logger
from fortune.models.domain.user_domain import Recipient, UserRecord
from fortune.services.llm_service import LLMService

logger = get_logger(__name__)

SOURCE_LLM = "llm"
SOURCE_STATIC = "static"


@dataclass(slots=True)
class GeneratedText:
    text: str
    tokens_used: int
    source: str


async def exclude_sent_today(
    users: Iterable[UserRecord],
    ledger: EngagementLedger,
    message_type: MessageType,
    now: datetime | None = None,
) -> list[Recipient]:
    """Drop users already messaged with message_type during the current UTC day."""
    sent_today = await ledger.recipients_sent_today(message_type, now)
    return [
        Recipient(
            recipient_id=user.id,
            external_id=user.external_id,
            display_name=user.display_name,
            language_code=user.language_code,
        )
        for user in users
        if user.external_id and user.id not in sent_today
    ]


async def generate_with_fallback(
    llm: LLMService | None,
    messages: list[dict],
    fallback: str,
    *,
    trigger: str,
    max_tokens: int = 300,
) -> GeneratedText:
    """
    Ask the LLM for copy; any failure returns the static fallback.

    Never raises.
    """
    if llm is None or not llm.available:
        return GeneratedText(text=fallback, tokens_used=0, source=SOURCE_STATIC)

    try:
        result = await llm.invoke(messages, max_tokens=max_tokens)
    except Exception as e:
        logger.warning(
            "LLM generation failed, using static fallback",
            trigger=trigger,
            error=str(e),
            error_type=type(e).__name__,
        )
        return GeneratedText(text=fallback, tokens_used=0, source=SOURCE_STATIC)

    return GeneratedText(text=result.content, tokens_used=result.total_tokens, source=SOURCE_LLM)


def language_instruction(language_code: str | None) -> str:
    return f"Reply in the language with ISO code '{language_code or 'ru'}'."
