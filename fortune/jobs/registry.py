"""
Queue name -> handler registry.

Built once at startup by the composition root. validate() makes sure every
queue a producer can enqueue to has a handler before any worker starts.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from fortune.jobs.constants import (
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
from fortune.jobs.models import WorkerOptions
from fortune.jobs.queue import JobHandler, JobQueue

ENQUEUEABLE_QUEUES: frozenset[str] = frozenset(
    {
        QUEUE_ANALYZE_PHOTO,
        QUEUE_CHAT_REPLY,
        QUEUE_SEND_MESSAGE,
        QUEUE_INACTIVE_REMINDER,
        QUEUE_WEEKLY_CHECKIN,
        QUEUE_DAILY_FORTUNE,
        QUEUE_INSIGHT_DISPATCH,
        QUEUE_MORNING_INSIGHT_SINGLE,
        QUEUE_EVENING_INSIGHT_SINGLE,
        QUEUE_STALE_LOCK_CLEANUP,
    }
)


class RegistryError(RuntimeError):
    """Raised when the registry is incomplete or registered twice."""


@dataclass(slots=True)
class RegisteredHandler:
    queue_name: str
    handler: JobHandler
    options: WorkerOptions


class QueueRegistry:
    def __init__(self):
        self._handlers: dict[str, RegisteredHandler] = {}

    def register(
        self,
        queue_name: str,
        handler: JobHandler,
        *,
        batch_size: int = 1,
        polling_interval_seconds: float = 2.0,
    ) -> None:
        if queue_name in self._handlers:
            raise RegistryError(f"Handler already registered for queue '{queue_name}'")
        self._handlers[queue_name] = RegisteredHandler(
            queue_name=queue_name,
            handler=handler,
            options=WorkerOptions(
                batch_size=batch_size, polling_interval_seconds=polling_interval_seconds
            ),
        )

    def get(self, queue_name: str) -> RegisteredHandler:
        try:
            return self._handlers[queue_name]
        except KeyError:
            raise RegistryError(f"No handler registered for queue '{queue_name}'") from None

    def __contains__(self, queue_name: str) -> bool:
        return queue_name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    @property
    def queue_names(self) -> list[str]:
        return sorted(self._handlers)

    def missing(self, required: Iterable[str] = ENQUEUEABLE_QUEUES) -> list[str]:
        return sorted(set(required) - set(self._handlers))

    def validate(self, required: Iterable[str] = ENQUEUEABLE_QUEUES) -> None:
        missing = self.missing(required)
        if missing:
            raise RegistryError(f"Queues without a registered handler: {', '.join(missing)}")

    async def bind(self, queue: JobQueue) -> list[str]:
        """Register a polling worker for every handler. Returns worker ids."""
        worker_ids = []
        for entry in self._handlers.values():
            worker_ids.append(
                await queue.register_worker(
                    entry.queue_name,
                    entry.handler,
                    batch_size=entry.options.batch_size,
                    polling_interval_seconds=entry.options.polling_interval_seconds,
                )
            )
        return worker_ids
