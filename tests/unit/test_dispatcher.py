"""
Tests for the hourly timezone-aware insight dispatcher.
"""

from datetime import UTC, datetime

import pytest

from fortune.engagement.dispatcher import TimezoneDispatcher
from fortune.jobs.constants import QUEUE_EVENING_INSIGHT_SINGLE, QUEUE_MORNING_INSIGHT_SINGLE


@pytest.fixture
def dispatcher(users, queue):
    return TimezoneDispatcher(users, queue)


@pytest.mark.asyncio
async def test_new_york_user_matches_only_at_local_eight(dispatcher, users, make_user):
    users.dispatch_candidates = [make_user("ny", timezone="America/New_York")]

    at_noon_utc = await dispatcher.find_users_for_insight_type("morning", datetime(2026, 3, 10, 12, 0, tzinfo=UTC))
    at_one_utc = await dispatcher.find_users_for_insight_type("morning", datetime(2026, 3, 10, 13, 0, tzinfo=UTC))

    assert [u.id for u in at_noon_utc] == ["ny"]
    assert at_one_utc == []


@pytest.mark.asyncio
async def test_moscow_evening_preference(dispatcher, users, make_user):
    users.dispatch_candidates = [
        make_user("msk", settings={"evening_time": "20:00"}),
    ]

    at_17 = await dispatcher.find_users_for_insight_type("evening", datetime(2026, 3, 10, 17, 0, tzinfo=UTC))
    at_16 = await dispatcher.find_users_for_insight_type("evening", datetime(2026, 3, 10, 16, 0, tzinfo=UTC))

    assert [u.id for u in at_17] == ["msk"]
    assert at_16 == []


@pytest.mark.asyncio
async def test_disabled_and_unreachable_users_are_skipped(dispatcher, users, make_user):
    now = datetime(2026, 3, 10, 5, 0, tzinfo=UTC)  # 08:00 Moscow
    users.dispatch_candidates = [
        make_user("off", settings={"enabled": False}),
        make_user("morning-off", settings={"morning_enabled": False}),
        make_user("no-chat", external_id=None),
        make_user("ok", settings={"morning_enabled": None}),
    ]

    matching = await dispatcher.find_users_for_insight_type("morning", now)

    assert [u.id for u in matching] == ["ok"]


@pytest.mark.asyncio
async def test_invalid_timezone_uses_default(dispatcher, users, make_user):
    users.dispatch_candidates = [make_user("bad-tz", timezone="Nowhere/Land")]

    matching = await dispatcher.find_users_for_insight_type("morning", datetime(2026, 3, 10, 5, 0, tzinfo=UTC))

    assert matching[0].timezone == "Europe/Moscow"


@pytest.mark.asyncio
async def test_dispatch_enqueues_single_user_jobs(dispatcher, users, job_store, make_user):
    users.dispatch_candidates = [
        make_user("u1", external_id=11, display_name="Anna", language_code="en"),
        make_user("u2", external_id=12, timezone="UTC"),
    ]

    result = await dispatcher.dispatch_morning_insights(datetime(2026, 3, 10, 5, 0, tzinfo=UTC))

    assert result.to_dict() == {"dispatched": 1, "failed": 0}
    (job,) = job_store.jobs_in(QUEUE_MORNING_INSIGHT_SINGLE)
    assert job.payload == {
        "user_id": "u1",
        "timezone": "Europe/Moscow",
        "external_id": 11,
        "display_name": "Anna",
        "language_code": "en",
    }
    assert job.retry_limit == 3
    assert job.retry_delay_seconds == 60
    assert job_store.jobs_in(QUEUE_EVENING_INSIGHT_SINGLE) == []


@pytest.mark.asyncio
async def test_failed_enqueue_is_counted(dispatcher, users, job_store, make_user):
    users.dispatch_candidates = [make_user("u1"), make_user("u2")]
    job_store.fail_inserts = True

    result = await dispatcher.dispatch("morning", datetime(2026, 3, 10, 5, 0, tzinfo=UTC))

    assert result.dispatched == 0
    assert result.failed == 2


@pytest.mark.asyncio
async def test_user_query_failure_propagates(dispatcher, users):
    users.error = ConnectionError("profiles unavailable")

    with pytest.raises(ConnectionError):
        await dispatcher.dispatch("evening")


@pytest.mark.asyncio
async def test_no_matching_users(dispatcher, users):
    result = await dispatcher.dispatch("evening", datetime(2026, 3, 10, 5, 0, tzinfo=UTC))

    assert result.to_dict() == {"dispatched": 0, "failed": 0}


@pytest.mark.asyncio
async def test_new_york_user_matches_once_per_day(dispatcher, users, make_user):
    users.dispatch_candidates = [make_user("ny", timezone="America/New_York", settings={"morning_time": "08:00"})]
    start = datetime(2026, 3, 10, 0, 0, tzinfo=UTC)

    matched_hours = []
    for hour in range(24):
        found = await dispatcher.find_users_for_insight_type("morning", start.replace(hour=hour))
        if found:
            matched_hours.append(hour)

    assert matched_hours == [12]


@pytest.mark.asyncio
async def test_malformed_settings_skip_only_that_user(dispatcher, users, make_user):
    users.dispatch_candidates = [
        make_user("bad", timezone="America/New_York", settings={"enabled": "sometimes"}),
        make_user("good", timezone="America/New_York"),
    ]

    matching = await dispatcher.find_users_for_insight_type("morning", datetime(2026, 3, 10, 12, 0, tzinfo=UTC))

    assert [u.id for u in matching] == ["good"]


@pytest.mark.asyncio
async def test_hourly_sweep_uses_job_creation_time(dispatcher, users, job_store, make_user, make_job):
    users.dispatch_candidates = [make_user("msk", settings={"evening_time": "20:00"})]
    job = make_job("insight-dispatch", created_at=datetime(2026, 3, 10, 17, 0, tzinfo=UTC))

    await dispatcher.run_hourly_sweep(job)

    (queued,) = job_store.jobs_in(QUEUE_EVENING_INSIGHT_SINGLE)
    assert queued.payload["user_id"] == "msk"
    assert job_store.jobs_in(QUEUE_MORNING_INSIGHT_SINGLE) == []


@pytest.mark.asyncio
async def test_hourly_sweep_runs_evening_after_morning_failure(
    dispatcher, users, job_store, make_user, make_job, monkeypatch
):
    users.dispatch_candidates = [make_user("msk", settings={"evening_time": "20:00"})]
    real_list = users.list_dispatch_candidates
    calls = 0

    async def flaky_list():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise ConnectionError("profiles unavailable")
        return await real_list()

    monkeypatch.setattr(users, "list_dispatch_candidates", flaky_list)
    job = make_job("insight-dispatch", created_at=datetime(2026, 3, 10, 17, 0, tzinfo=UTC))

    with pytest.raises(ConnectionError):
        await dispatcher.run_hourly_sweep(job)

    assert calls == 2
    assert len(job_store.jobs_in(QUEUE_EVENING_INSIGHT_SINGLE)) == 1
