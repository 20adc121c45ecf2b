"""Morning advice and evening reflection for timezone-dispatched insights."""

from dataclasses import dataclass
from datetime import datetime

from fortune.engagement.triggers.base import SOURCE_STATIC, generate_with_fallback, language_instruction
from fortune.engagement.triggers.static_pools import (
    EVENING_INSIGHT_POOL,
    MORNING_ADVICE_POOL,
    default_name,
    pick_for_day,
    pool_for,
    shorten,
)
from fortune.models.domain.user_domain import DispatchableUser, InsightKind
from fortune.services.llm_service import LLMService

INSIGHT_MAX_TOKENS = 500

_PROMPTS: dict[str, str] = {
    "morning": "You write one short morning advice for the day ahead, in the voice of a "
    "kind coffee grounds fortune teller.",
    "evening": "You write one short evening reflection wishing the reader a calm night, in "
    "the voice of a kind coffee grounds fortune teller.",
}


@dataclass(slots=True)
class GeneratedInsight:
    text: str
    short_text: str
    tokens_used: int
    source: str


def _static_insight(pools: dict[str, list[str]], language_code: str, today: datetime | None) -> GeneratedInsight:
    text = pick_for_day(pool_for(pools, language_code), today)
    return GeneratedInsight(text=text, short_text=shorten(text), tokens_used=0, source=SOURCE_STATIC)


def get_static_morning_insight(language_code: str, today: datetime | None = None) -> GeneratedInsight:
    return _static_insight(MORNING_ADVICE_POOL, language_code, today)


def get_static_evening_insight(language_code: str, today: datetime | None = None) -> GeneratedInsight:
    return _static_insight(EVENING_INSIGHT_POOL, language_code, today)


async def generate_insight(
    kind: InsightKind,
    user: DispatchableUser,
    llm: LLMService | None,
    *,
    today: datetime | None = None,
) -> GeneratedInsight:
    static = (
        get_static_morning_insight(user.language_code, today)
        if kind == "morning"
        else get_static_evening_insight(user.language_code, today)
    )
    name = user.display_name or default_name(user.language_code)
    messages = [
        {"role": "system", "content": _PROMPTS[kind] + " " + language_instruction(user.language_code)},
        {"role": "user", "content": f"User name: {name}."},
    ]
    generated = await generate_with_fallback(
        llm, messages, static.text, trigger=f"{kind}-insight", max_tokens=INSIGHT_MAX_TOKENS
    )
    return GeneratedInsight(
        text=generated.text,
        short_text=shorten(generated.text),
        tokens_used=generated.tokens_used,
        source=generated.source,
    )


async def generate_morning_insight(
    user: DispatchableUser, llm: LLMService | None, *, today: datetime | None = None
) -> GeneratedInsight:
    return await generate_insight("morning", user, llm, today=today)


async def generate_evening_insight(
    user: DispatchableUser, llm: LLMService | None, *, today: datetime | None = None
) -> GeneratedInsight:
    return await generate_insight("evening", user, llm, today=today)
