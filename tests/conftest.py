import dataclasses
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from fortune.engagement.ledger import EngagementLedger, EngagementLogEntry, MessageType
from fortune.jobs.errors import ErrorKind
from fortune.jobs.models import Job, JobOptions, JobState, ScheduleDescriptor
from fortune.jobs.queue import JobQueue
from fortune.jobs.store import JobStore, options_to_dict
from fortune.models.domain.user_domain import UserRecord
from fortune.services.llm_service import LLMResult, LLMServiceError
from fortune.services.telegram_client import ChannelSendError

FIXED_NOW = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryJobStore(JobStore):
    """JobStore kept in dicts. Mirrors the guarded transitions of the SQL store."""

    def __init__(self):
        self.jobs: dict[str, Job] = {}
        self.schedules: dict[str, dict[str, Any]] = {}
        self.fail_inserts = False
        self.fail_ping = False
        self.schema_ensured = False

    async def ensure_schema(self) -> None:
        self.schema_ensured = True

    async def ping(self) -> bool:
        if self.fail_ping:
            raise ConnectionError("connection refused")
        return True

    async def insert_job(
        self, queue_name: str, payload: dict[str, Any], options: JobOptions, now: datetime
    ) -> str:
        if self.fail_inserts:
            raise ConnectionError("connection refused")
        job_id = str(uuid.uuid4())
        self.jobs[job_id] = Job(
            id=job_id,
            queue_name=queue_name,
            payload=dict(payload),
            state=JobState.CREATED,
            retry_count=0,
            retry_limit=options.retry_limit,
            retry_delay_seconds=options.retry_delay_seconds,
            retry_backoff=options.retry_backoff,
            expire_after_seconds=options.expire_after_seconds,
            priority=options.priority,
            start_after=options.start_after or now,
            created_at=now,
        )
        return job_id

    async def get_job(self, job_id: str) -> Job | None:
        return self.jobs.get(job_id)

    async def claim_jobs(self, queue_name: str, batch_size: int, now: datetime) -> list[Job]:
        ready = [
            job
            for job in self.jobs.values()
            if job.queue_name == queue_name
            and job.state == JobState.CREATED
            and (job.start_after is None or job.start_after <= now)
        ]
        ready.sort(key=lambda job: (-job.priority, job.created_at))
        claimed = []
        for job in ready[:batch_size]:
            job.state = JobState.ACTIVE
            job.started_at = now
            claimed.append(dataclasses.replace(job))
        return claimed

    def _finish(self, job_id: str, state: JobState, output: dict | None, now: datetime) -> bool:
        job = self.jobs.get(job_id)
        if job is None or job.state != JobState.ACTIVE:
            return False
        job.state = state
        job.completed_at = now
        job.output = output
        return True

    async def complete_job(self, job_id: str, output: dict | None, now: datetime) -> bool:
        return self._finish(job_id, JobState.COMPLETED, output, now)

    async def fail_job(self, job_id: str, output: dict, now: datetime) -> bool:
        return self._finish(job_id, JobState.FAILED, output, now)

    async def expire_job(self, job_id: str, output: dict, now: datetime) -> bool:
        return self._finish(job_id, JobState.EXPIRED, output, now)

    async def retry_job(
        self, job_id: str, retry_count: int, start_after: datetime, output: dict
    ) -> bool:
        job = self.jobs.get(job_id)
        if job is None or job.state != JobState.ACTIVE:
            return False
        job.state = JobState.CREATED
        job.retry_count = retry_count
        job.start_after = start_after
        job.started_at = None
        job.output = output
        return True

    async def fail_stale_active(
        self, started_before: datetime, output: dict, now: datetime
    ) -> list[dict[str, Any]]:
        rows = []
        for job in self.jobs.values():
            if job.state == JobState.ACTIVE and job.started_at and job.started_at < started_before:
                job.state = JobState.FAILED
                job.completed_at = now
                job.output = output
                rows.append({"id": job.id, "queue_name": job.queue_name, "started_at": job.started_at})
        return rows

    async def upsert_schedule(self, descriptor: ScheduleDescriptor, now: datetime) -> None:
        existing = self.schedules.get(descriptor.queue_name)
        self.schedules[descriptor.queue_name] = {
            "queue_name": descriptor.queue_name,
            "cron_expression": descriptor.cron_expression,
            "timezone": descriptor.timezone,
            "options": options_to_dict(descriptor.options),
            "last_fired_at": existing["last_fired_at"] if existing else now,
        }

    async def list_schedules(self) -> list[dict[str, Any]]:
        return [dict(row) for _, row in sorted(self.schedules.items())]

    async def claim_schedule_slot(self, queue_name: str, fire_at: datetime) -> bool:
        row = self.schedules.get(queue_name)
        if row is None:
            return False
        if row["last_fired_at"] is not None and row["last_fired_at"] >= fire_at:
            return False
        row["last_fired_at"] = fire_at
        return True

    async def release_schedule_slot(self, queue_name: str, fire_at: datetime, previous: datetime | None) -> None:
        row = self.schedules.get(queue_name)
        if row is not None and row["last_fired_at"] == fire_at:
            row["last_fired_at"] = previous

    # helpers for assertions
    def jobs_in(self, queue_name: str) -> list[Job]:
        return [job for job in self.jobs.values() if job.queue_name == queue_name]

    def add_active(self, queue_name: str, started_at: datetime) -> Job:
        job_id = str(uuid.uuid4())
        job = Job(
            id=job_id,
            queue_name=queue_name,
            payload={},
            state=JobState.ACTIVE,
            retry_count=0,
            retry_limit=3,
            retry_delay_seconds=5,
            expire_after_seconds=300,
            created_at=started_at,
            started_at=started_at,
        )
        self.jobs[job_id] = job
        return job


class InMemoryLedger(EngagementLedger):
    """EngagementLedger with its storage primitives backed by a list."""

    def __init__(self):
        super().__init__(db=None)
        self.entries: list[EngagementLogEntry] = []
        self.fail_reads = False
        self.fail_writes = False

    def add(self, recipient_id: str, message_type: MessageType, sent_at: datetime) -> None:
        self.entries.append(EngagementLogEntry(recipient_id, message_type, sent_at))

    async def _select_recipients(self, message_type, start, end) -> list[str]:
        if self.fail_reads:
            raise ConnectionError("ledger unavailable")
        return [
            e.recipient_id
            for e in self.entries
            if e.message_type == message_type and start <= e.sent_at < end
        ]

    async def _count_for_recipient(self, recipient_id, message_type, start, end) -> int:
        if self.fail_reads:
            raise ConnectionError("ledger unavailable")
        return sum(
            1
            for e in self.entries
            if e.recipient_id == recipient_id
            and e.message_type == message_type
            and start <= e.sent_at < end
        )

    async def _insert(self, entry: EngagementLogEntry) -> None:
        if self.fail_writes:
            raise ConnectionError("ledger unavailable")
        self.entries.append(entry)


class FakeUserRepository:
    def __init__(self):
        self.dispatch_candidates: list[UserRecord] = []
        self.inactive_candidates: list[UserRecord] = []
        self.checkin_candidates: list[UserRecord] = []
        self.fortune_candidates: list[UserRecord] = []
        self.error: Exception | None = None
        self.inactive_since: datetime | None = None

    def _result(self, users: list[UserRecord]) -> list[UserRecord]:
        if self.error:
            raise self.error
        return list(users)

    async def list_dispatch_candidates(self) -> list[UserRecord]:
        return self._result(self.dispatch_candidates)

    async def list_inactive_candidates(self, inactive_since: datetime) -> list[UserRecord]:
        self.inactive_since = inactive_since
        return self._result(self.inactive_candidates)

    async def list_checkin_candidates(self) -> list[UserRecord]:
        return self._result(self.checkin_candidates)

    async def list_fortune_candidates(self) -> list[UserRecord]:
        return self._result(self.fortune_candidates)


class FakeChannel:
    """Records sends. fail_on holds 1-based call numbers that raise."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.calls = 0
        self.fail_on: set[int] = set()
        self.fail_kind = ErrorKind.TRANSIENT

    async def send_message(self, chat_id, text, *, parse_mode="HTML") -> dict:
        self.calls += 1
        if self.calls in self.fail_on:
            raise ChannelSendError(f"send #{self.calls} failed", kind=self.fail_kind, status_code=502)
        self.sent.append({"chat_id": chat_id, "text": text, "parse_mode": parse_mode})
        return {"message_id": self.calls}

    async def close(self) -> None:
        return None


class FakeLLM:
    def __init__(self, content: str = "Generated text", error: Exception | None = None):
        self.content = content
        self.error = error
        self.available = True
        self.calls: list[list[dict]] = []

    async def invoke(self, messages, *, max_tokens: int = 500, temperature: float = 0.8) -> LLMResult:
        self.calls.append(messages)
        if self.error:
            raise self.error
        return LLMResult(content=self.content, usage_metadata={"total_tokens": 42})


def build_user(
    user_id: str = "user-1",
    *,
    external_id: int | None = 1001,
    timezone: str | None = "Europe/Moscow",
    settings: dict | None = None,
    display_name: str | None = "Anna",
    language_code: str = "ru",
) -> UserRecord:
    return UserRecord(
        id=user_id,
        external_id=external_id,
        display_name=display_name,
        language_code=language_code,
        timezone=timezone,
        notification_settings=settings,
    )


def build_job(queue_name: str = "test-queue", payload: dict | None = None, **overrides) -> Job:
    fields = {
        "id": str(uuid.uuid4()),
        "queue_name": queue_name,
        "payload": payload or {},
        "state": JobState.ACTIVE,
        "retry_count": 0,
        "retry_limit": 3,
        "retry_delay_seconds": 5,
        "expire_after_seconds": 300,
        "created_at": FIXED_NOW,
        "started_at": FIXED_NOW,
    }
    fields.update(overrides)
    return Job(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def queue(job_store, clock):
    return JobQueue(job_store, clock=clock, scheduler_tick_seconds=0.01, default_polling_interval_seconds=0.01)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def users():
    return FakeUserRepository()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def failing_llm():
    return FakeLLM(error=LLMServiceError("upstream 500"))


@pytest.fixture
def make_user():
    return build_user


@pytest.fixture
def make_job():
    return build_job
