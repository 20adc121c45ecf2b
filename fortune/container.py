"""
Composition root.

Every long-lived object (pool, queue, services, caches) is created here and
passed to its users through constructors. Both the HTTP app and the worker
CLI build one ServiceContainer per process.
"""

from dataclasses import dataclass, field

from fortune.config import Settings
from fortune.db.pool import DatabasePoolManager
from fortune.engagement.dispatcher import TimezoneDispatcher
from fortune.engagement.ledger import EngagementLedger
from fortune.engagement.scheduler import setup_scheduler
from fortune.engagement.worker import EngagementWorker
from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.constants import (
    ENGAGEMENT_POLLING_INTERVAL_SECONDS,
    QUEUE_ANALYZE_PHOTO,
    QUEUE_CHAT_REPLY,
    QUEUE_DAILY_FORTUNE,
    QUEUE_EVENING_INSIGHT_SINGLE,
    QUEUE_INACTIVE_REMINDER,
    QUEUE_INSIGHT_DISPATCH,
    QUEUE_MORNING_INSIGHT_SINGLE,
    QUEUE_SEND_MESSAGE,
    QUEUE_STALE_LOCK_CLEANUP,
    QUEUE_WEEKLY_CHECKIN,
)
from fortune.jobs.handlers import JobHandlers
from fortune.jobs.queue import JobQueue
from fortune.jobs.reaper import StaleLockReaper
from fortune.jobs.registry import QueueRegistry
from fortune.jobs.store import JobStore, PostgresJobStore
from fortune.repositories.user_repository import UserRepository
from fortune.services.config_service import ConfigService
from fortune.services.credits_service import CreditsService
from fortune.services.intake_service import IntakeService
from fortune.services.llm_service import LLMService
from fortune.services.telegram_client import TelegramClient

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    db: DatabasePoolManager
    store: JobStore
    queue: JobQueue
    ledger: EngagementLedger
    users: UserRepository
    config: ConfigService
    credits: CreditsService
    llm: LLMService
    channel: TelegramClient
    intake: IntakeService
    dispatcher: TimezoneDispatcher
    engagement: EngagementWorker
    handlers: JobHandlers
    reaper: StaleLockReaper
    started: list[str] = field(default_factory=list)

    @classmethod
    def build(cls, settings: Settings) -> "ServiceContainer":
        db = DatabasePoolManager(settings.DATABASE_URL, settings.get_db_pool_config())
        store = PostgresJobStore(db)
        queue = JobQueue(
            store,
            scheduler_tick_seconds=settings.SCHEDULER_TICK_SECONDS,
            default_polling_interval_seconds=settings.WORKER_POLLING_INTERVAL_SECONDS,
        )
        ledger = EngagementLedger(db)
        users = UserRepository(db)
        config = ConfigService(db, ttl_seconds=settings.CONFIG_CACHE_TTL_SECONDS)
        credits = CreditsService(db)
        llm = LLMService(
            settings.OPENAI_API_KEY,
            settings.OPENAI_MODEL,
            base_url=settings.OPENAI_BASE_URL,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
        )
        channel = TelegramClient(settings.telegram_api_url(), timeout=settings.TELEGRAM_TIMEOUT_SECONDS)

        return cls(
            settings=settings,
            db=db,
            store=store,
            queue=queue,
            ledger=ledger,
            users=users,
            config=config,
            credits=credits,
            llm=llm,
            channel=channel,
            intake=IntakeService(queue, credits, config),
            dispatcher=TimezoneDispatcher(users, queue, default_timezone=settings.DEFAULT_TIMEZONE),
            engagement=EngagementWorker(
                channel,
                ledger,
                users,
                llm,
                rate_limit_seconds=settings.ENGAGEMENT_RATE_LIMIT_MS / 1000,
            ),
            handlers=JobHandlers(llm, channel),
            reaper=StaleLockReaper(store, default_max_age_minutes=settings.STALE_LOCK_MAX_AGE_MINUTES),
        )

    async def initialize(self) -> None:
        """Open the pool, start the queue (fails loudly) and create the ledger table."""
        try:
            await self.db.initialize()
            self.started.append("database_pool")

            await self.queue.start()
            self.started.append("job_queue")

            await self.ledger.ensure_schema()
            logger.info("All services initialized successfully", services=self.started)
        except Exception as e:
            logger.error("Failed to initialize services", error=str(e), completed_tasks=self.started)
            await self.close()
            raise

    async def close(self) -> None:
        """Tear down in reverse order. Errors are logged, not raised."""
        shutdown_errors = []

        if "job_queue" in self.started:
            try:
                await self.queue.stop()
            except Exception as e:
                logger.error("Error stopping job queue", error=str(e))
                shutdown_errors.append(f"Queue: {e}")

        try:
            await self.channel.close()
        except Exception as e:
            logger.error("Error closing channel client", error=str(e))
            shutdown_errors.append(f"Channel: {e}")

        if "database_pool" in self.started:
            try:
                await self.db.close()
            except Exception as e:
                logger.error("Error closing database pool", error=str(e))
                shutdown_errors.append(f"Database: {e}")

        self.started.clear()
        if shutdown_errors:
            logger.warning("Some services had shutdown errors", errors=shutdown_errors)
        else:
            logger.info("All services closed successfully")

    def build_registry(self) -> QueueRegistry:
        registry = QueueRegistry()
        polling = self.settings.WORKER_POLLING_INTERVAL_SECONDS

        registry.register(QUEUE_ANALYZE_PHOTO, self.handlers.handle_analyze_photo, polling_interval_seconds=polling)
        registry.register(QUEUE_CHAT_REPLY, self.handlers.handle_chat_reply, polling_interval_seconds=polling)
        registry.register(QUEUE_SEND_MESSAGE, self.handlers.handle_send_message, polling_interval_seconds=polling)

        for queue_name, handler in (
            (QUEUE_INACTIVE_REMINDER, self.engagement.process_inactive_reminder),
            (QUEUE_WEEKLY_CHECKIN, self.engagement.process_weekly_checkin),
            (QUEUE_DAILY_FORTUNE, self.engagement.process_daily_fortune),
            (QUEUE_INSIGHT_DISPATCH, self.dispatcher.run_hourly_sweep),
            (QUEUE_STALE_LOCK_CLEANUP, self.reaper.handle_job),
        ):
            registry.register(queue_name, handler, polling_interval_seconds=ENGAGEMENT_POLLING_INTERVAL_SECONDS)

        registry.register(
            QUEUE_MORNING_INSIGHT_SINGLE, self.engagement.process_morning_insight, polling_interval_seconds=polling
        )
        registry.register(
            QUEUE_EVENING_INSIGHT_SINGLE, self.engagement.process_evening_insight, polling_interval_seconds=polling
        )
        return registry

    async def start_workers(self) -> list[str]:
        """
        Worker-mode startup: validate handlers, reap stale locks, bind
        workers, persist schedules and start the scheduler loop.
        """
        registry = self.build_registry()
        registry.validate()

        try:
            cleaned = await self.reaper.run_once()
            logger.info("Startup stale-lock cleanup finished", cleaned_count=cleaned)
        except Exception as e:
            logger.warning("Startup stale-lock cleanup failed, continuing", error=str(e))

        worker_ids = await registry.bind(self.queue)
        await setup_scheduler(self.queue)
        self.queue.start_scheduler()

        logger.info("Workers started", count=len(worker_ids), queues=registry.queue_names)
        return worker_ids
