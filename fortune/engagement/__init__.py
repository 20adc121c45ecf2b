from fortune.engagement.dispatcher import DispatchResult, TimezoneDispatcher
from fortune.engagement.ledger import EngagementLedger, MessageType
from fortune.engagement.scheduler import SCHEDULES, SchedulerSetupError, setup_scheduler
from fortune.engagement.worker import BatchResult, EngagementWorker

__all__ = [
    "SCHEDULES",
    "BatchResult",
    "DispatchResult",
    "EngagementLedger",
    "EngagementWorker",
    "MessageType",
    "SchedulerSetupError",
    "TimezoneDispatcher",
    "setup_scheduler",
]
