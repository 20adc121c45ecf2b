"""
Tests for engagement trigger eligibility and message generation.
"""

from datetime import timedelta

import pytest

from fortune.engagement.ledger import MessageType
from fortune.engagement.triggers import (
    create_daily_fortune_message,
    create_inactive_reminder_message,
    create_weekly_checkin_message,
    find_daily_fortune_users,
    find_inactive_users,
    find_weekly_checkin_users,
    generate_evening_insight,
    generate_morning_insight,
    get_static_morning_insight,
)
from fortune.engagement.triggers.static_pools import (
    DAILY_FORTUNE_POOL,
    EVENING_INSIGHT_POOL,
    INACTIVE_REMINDER_POOL,
    MORNING_ADVICE_POOL,
    pick_for_day,
    shorten,
)
from fortune.models.domain.user_domain import DispatchableUser


def _dispatchable(language_code="ru", display_name="Anna"):
    return DispatchableUser(
        id="user-1",
        timezone="Europe/Moscow",
        external_id=1001,
        display_name=display_name,
        language_code=language_code,
    )


@pytest.mark.asyncio
async def test_weekly_checkin_excludes_recipients_sent_today(users, ledger, clock, make_user):
    users.checkin_candidates = [make_user("u1", external_id=1), make_user("u2", external_id=2)]
    ledger.add("u1", MessageType.WEEKLY_CHECKIN, clock() - timedelta(hours=1))

    recipients = await find_weekly_checkin_users(users, ledger, now=clock())

    assert [r.recipient_id for r in recipients] == ["u2"]


@pytest.mark.asyncio
async def test_rerun_same_day_skips_everyone_already_messaged(users, ledger, clock, make_user):
    users.fortune_candidates = [make_user("u1", external_id=1), make_user("u2", external_id=2)]
    first = await find_daily_fortune_users(users, ledger, now=clock())
    for recipient in first:
        await ledger.record_sent(recipient.recipient_id, MessageType.DAILY_FORTUNE, clock())

    second = await find_daily_fortune_users(users, ledger, now=clock() + timedelta(hours=2))

    assert len(first) == 2
    assert second == []


@pytest.mark.asyncio
async def test_entry_from_yesterday_does_not_exclude(users, ledger, clock, make_user):
    users.inactive_candidates = [make_user("u1")]
    ledger.add("u1", MessageType.INACTIVE_REMINDER, clock() - timedelta(days=1))

    recipients = await find_inactive_users(users, ledger, now=clock())

    assert [r.recipient_id for r in recipients] == ["u1"]
    assert users.inactive_since == clock() - timedelta(days=7)


@pytest.mark.asyncio
async def test_ledger_outage_does_not_block_batch(users, ledger, clock, make_user):
    users.checkin_candidates = [make_user("u1")]
    ledger.add("u1", MessageType.WEEKLY_CHECKIN, clock())
    ledger.fail_reads = True

    recipients = await find_weekly_checkin_users(users, ledger, now=clock())

    assert [r.recipient_id for r in recipients] == ["u1"]


@pytest.mark.asyncio
async def test_candidates_without_chat_id_are_dropped(users, ledger, clock, make_user):
    users.checkin_candidates = [make_user("u1", external_id=None)]

    assert await find_weekly_checkin_users(users, ledger, now=clock()) == []


@pytest.mark.asyncio
async def test_inactive_reminder_falls_back_when_llm_fails(failing_llm, clock):
    text = await create_inactive_reminder_message("Anna", llm=failing_llm, today=clock())

    expected = pick_for_day(INACTIVE_REMINDER_POOL["ru"], clock()).format(name="Anna")
    assert text == expected
    assert len(failing_llm.calls) == 1


@pytest.mark.asyncio
async def test_daily_fortune_falls_back_when_llm_fails(failing_llm, clock):
    text = await create_daily_fortune_message(llm=failing_llm, language_code="en", today=clock())

    assert pick_for_day(DAILY_FORTUNE_POOL["en"], clock()) in text
    assert text.startswith("✨ Advice of the day")


@pytest.mark.asyncio
async def test_daily_fortune_unknown_language_uses_russian(clock):
    text = await create_daily_fortune_message(language_code="zh", today=clock())

    assert pick_for_day(DAILY_FORTUNE_POOL["ru"], clock()) in text


@pytest.mark.asyncio
async def test_weekly_checkin_uses_llm_text(llm):
    text = await create_weekly_checkin_message("Anna", llm=llm, language_code="en")

    assert text == "Generated text"
    assert "Anna" in llm.calls[0][1]["content"]


@pytest.mark.asyncio
async def test_missing_name_uses_localized_default(clock):
    text = await create_inactive_reminder_message(None, language_code="en", today=clock())

    assert "friend" in text


def test_static_morning_insight_short_text(clock):
    insight = get_static_morning_insight("en", clock())

    assert insight.text == pick_for_day(MORNING_ADVICE_POOL["en"], clock())
    assert insight.short_text == shorten(insight.text)
    assert len(insight.short_text) <= 100
    assert insight.tokens_used == 0


def test_shorten_marks_truncation():
    assert shorten("a" * 100) == "a" * 100
    assert shorten("a" * 101) == "a" * 97 + "..."


@pytest.mark.asyncio
async def test_morning_insight_from_llm(llm, clock):
    insight = await generate_morning_insight(_dispatchable(), llm, today=clock())

    assert insight.text == "Generated text"
    assert insight.tokens_used == 42
    assert insight.source == "llm"


@pytest.mark.asyncio
async def test_evening_insight_falls_back_for_unknown_language(failing_llm, clock):
    insight = await generate_evening_insight(_dispatchable(language_code="de"), failing_llm, today=clock())

    assert insight.text == pick_for_day(EVENING_INSIGHT_POOL["ru"], clock())
    assert insight.source == "static"


@pytest.mark.asyncio
async def test_unavailable_llm_is_not_called(llm, clock):
    llm.available = False

    insight = await generate_morning_insight(_dispatchable(), llm, today=clock())

    assert llm.calls == []
    assert insight.source == "static"
