"""
Tests for the engagement worker: batch resilience, ledger writes and the
single-user insight handlers.
"""

from datetime import timedelta

import pytest

from fortune.engagement.ledger import MessageType
from fortune.engagement.worker import EngagementWorker
from fortune.jobs.errors import PayloadValidationError
from fortune.models.domain.user_domain import Recipient
from fortune.services.telegram_client import ChannelSendError


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def worker(channel, ledger, users, llm, sleeper):
    return EngagementWorker(channel, ledger, users, llm, sleep=sleeper)


def _recipients(count: int) -> list[Recipient]:
    return [
        Recipient(recipient_id=f"u{i}", external_id=1000 + i, display_name=f"User {i}")
        for i in range(1, count + 1)
    ]


def _insight_payload(**overrides) -> dict:
    payload = {
        "user_id": "user-1",
        "timezone": "Europe/Moscow",
        "external_id": 1001,
        "display_name": "Anna",
        "language_code": "en",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_one_failed_send_does_not_stop_the_batch(worker, channel, ledger, sleeper):
    channel.fail_on = {3}

    async def build(recipient):
        return f"Hello {recipient.display_name}"

    result = await worker.send_batch(MessageType.WEEKLY_CHECKIN, _recipients(5), build)

    assert result.to_dict() == {
        "message_type": "weekly-checkin",
        "total": 5,
        "success": 4,
        "failed": 1,
    }
    assert channel.calls == 5
    assert [m["chat_id"] for m in channel.sent] == [1001, 1002, 1004, 1005]
    assert [e.recipient_id for e in ledger.entries] == ["u1", "u2", "u4", "u5"]
    assert result.errors == [{"recipient_id": "u3", "error": "send #3 failed"}]
    # Delay between sends, none after the last
    assert sleeper.delays == [0.1] * 4


@pytest.mark.asyncio
async def test_message_build_failure_is_counted(worker, channel):
    async def build(recipient):
        if recipient.recipient_id == "u1":
            raise RuntimeError("template broken")
        return "ok"

    result = await worker.send_batch(MessageType.INACTIVE_REMINDER, _recipients(2), build)

    assert result.failed == 1
    assert result.success == 1
    assert len(channel.sent) == 1


@pytest.mark.asyncio
async def test_ledger_write_failure_still_counts_success(worker, ledger):
    ledger.fail_writes = True

    async def build(recipient):
        return "ok"

    result = await worker.send_batch(MessageType.DAILY_FORTUNE, _recipients(2), build)

    assert result.success == 2
    assert ledger.entries == []


@pytest.mark.asyncio
async def test_weekly_checkin_batch_end_to_end(worker, users, channel, ledger, make_user, make_job):
    users.checkin_candidates = [make_user("u1", external_id=1), make_user("u2", external_id=2)]

    result = await worker.process_weekly_checkin(make_job("weekly-checkin"))

    assert result.success == 2
    assert {e.message_type for e in ledger.entries} == {MessageType.WEEKLY_CHECKIN}

    # A second run the same day finds nobody
    second = await worker.process_weekly_checkin(make_job("weekly-checkin"))
    assert second.total == 0
    assert channel.calls == 2


@pytest.mark.asyncio
async def test_daily_fortune_generates_text_once(worker, users, channel, llm, make_user, make_job):
    users.fortune_candidates = [make_user(f"u{i}", external_id=i) for i in range(1, 4)]

    result = await worker.process_daily_fortune(make_job("daily-fortune"))

    assert result.success == 3
    assert len(llm.calls) == 1
    assert len({m["text"] for m in channel.sent}) == 1


@pytest.mark.asyncio
async def test_daily_fortune_is_framed_in_each_recipient_language(
    channel, ledger, users, failing_llm, sleeper, make_user, make_job
):
    worker = EngagementWorker(channel, ledger, users, failing_llm, sleep=sleeper)
    users.fortune_candidates = [
        make_user("u1", external_id=1, language_code="en"),
        make_user("u2", external_id=2, language_code="ru"),
        make_user("u3", external_id=3, language_code="de"),
    ]

    result = await worker.process_daily_fortune(make_job("daily-fortune"))

    assert result.success == 3
    texts = {m["chat_id"]: m["text"] for m in channel.sent}
    assert texts[1].startswith("✨ Advice of the day")
    assert texts[2].startswith("✨ Совет дня")
    assert texts[3] == texts[2]
    assert len(failing_llm.calls) == 2


@pytest.mark.asyncio
async def test_inactive_reminder_uses_static_text_when_llm_down(
    channel, ledger, users, failing_llm, sleeper, make_user, make_job
):
    worker = EngagementWorker(channel, ledger, users, failing_llm, sleep=sleeper)
    users.inactive_candidates = [make_user("u1", display_name="Boris")]

    result = await worker.process_inactive_reminder(make_job("inactive-reminder"))

    assert result.success == 1
    assert "Boris" in channel.sent[0]["text"]


@pytest.mark.asyncio
async def test_recipient_query_failure_fails_the_job(worker, users, make_job):
    users.error = ConnectionError("profiles unavailable")

    with pytest.raises(ConnectionError):
        await worker.process_inactive_reminder(make_job("inactive-reminder"))


@pytest.mark.asyncio
async def test_insight_single_sends_and_records(worker, channel, ledger, clock, make_job):
    job = make_job("morning-insight-single", _insight_payload())

    sent = await worker.process_insight_single("morning", job, now=clock())

    assert sent is True
    assert channel.sent[0]["chat_id"] == 1001
    assert channel.sent[0]["text"] == "Generated text"
    (entry,) = ledger.entries
    assert entry.recipient_id == "user-1"
    assert entry.message_type == MessageType.MORNING_INSIGHT
    assert entry.sent_at == clock()


@pytest.mark.asyncio
async def test_insight_single_skips_when_sent_in_local_day(worker, channel, ledger, clock, make_job):
    ledger.add("user-1", MessageType.EVENING_INSIGHT, clock() - timedelta(hours=2))
    job = make_job("evening-insight-single", _insight_payload())

    sent = await worker.process_insight_single("evening", job, now=clock())

    assert sent is False
    assert channel.calls == 0


@pytest.mark.asyncio
async def test_insight_single_send_failure_is_reraised(worker, channel, ledger, clock, make_job):
    channel.fail_on = {1}

    with pytest.raises(ChannelSendError):
        await worker.process_insight_single("morning", make_job(payload=_insight_payload()), now=clock())
    assert ledger.entries == []


@pytest.mark.asyncio
async def test_insight_single_rejects_bad_payload(worker, make_job):
    job = make_job(payload=_insight_payload(external_id="not-a-chat"))

    with pytest.raises(PayloadValidationError):
        await worker.process_insight_single("morning", job)
