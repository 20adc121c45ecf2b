"""
Engagement ledger: append-only log of sent engagement messages.

Read before a send to skip recipients already messaged today, written right
after a successful send. Check-then-insert is not atomic; a concurrent
duplicate is possible and accepted.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from fortune.db.pool import DatabasePoolManager
from fortune.engagement.timezones import local_day_bounds, utc_day_bounds
from fortune.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MessageType(StrEnum):
    INACTIVE_REMINDER = "inactive-reminder"
    WEEKLY_CHECKIN = "weekly-checkin"
    DAILY_FORTUNE = "daily-fortune"
    MORNING_INSIGHT = "morning-insight"
    EVENING_INSIGHT = "evening-insight"


@dataclass(slots=True, frozen=True)
class EngagementLogEntry:
    recipient_id: str
    message_type: MessageType
    sent_at: datetime


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS engagement_log (
        id BIGSERIAL PRIMARY KEY,
        recipient_id TEXT NOT NULL,
        message_type TEXT NOT NULL,
        sent_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_engagement_log_type_sent
    ON engagement_log (message_type, sent_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_engagement_log_recipient
    ON engagement_log (recipient_id, message_type, sent_at)
    """,
)


class EngagementLedger:
    def __init__(self, db: DatabasePoolManager):
        self.db = db

    async def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            await self.db.execute(statement)

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    async def _select_recipients(
        self, message_type: MessageType, start: datetime, end: datetime
    ) -> list[str]:
        rows = await self.db.fetch_all(
            """
            SELECT DISTINCT recipient_id FROM engagement_log
            WHERE message_type = %s AND sent_at >= %s AND sent_at < %s
            """,
            (str(message_type), start, end),
        )
        return [str(row["recipient_id"]) for row in rows]

    async def _count_for_recipient(
        self, recipient_id: str, message_type: MessageType, start: datetime, end: datetime
    ) -> int:
        count = await self.db.fetch_val(
            """
            SELECT COUNT(*) FROM engagement_log
            WHERE recipient_id = %s AND message_type = %s
              AND sent_at >= %s AND sent_at < %s
            """,
            (recipient_id, str(message_type), start, end),
        )
        return int(count or 0)

    async def _insert(self, entry: EngagementLogEntry) -> None:
        await self.db.execute(
            "INSERT INTO engagement_log (recipient_id, message_type, sent_at) VALUES (%s, %s, %s)",
            (entry.recipient_id, str(entry.message_type), entry.sent_at),
        )

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    async def recipients_sent_between(
        self, message_type: MessageType, start: datetime, end: datetime
    ) -> set[str]:
        """
        Recipient ids with a ledger entry of `message_type` in [start, end).

        A failed read is logged and returns an empty set so the batch still
        runs without the filter.
        """
        try:
            return set(await self._select_recipients(message_type, start, end))
        except Exception as e:
            logger.warning(
                "Failed to check engagement log, continuing",
                message_type=str(message_type),
                error=str(e),
            )
            return set()

    async def recipients_sent_today(
        self, message_type: MessageType, now: datetime | None = None
    ) -> set[str]:
        """Recipients already messaged during the current UTC day."""
        start, end = utc_day_bounds(now)
        return await self.recipients_sent_between(message_type, start, end)

    async def has_sent_today(
        self,
        recipient_id: str,
        message_type: MessageType,
        timezone: str | None,
        now: datetime | None = None,
    ) -> bool:
        """True when the recipient got `message_type` during their local calendar day."""
        start, end = local_day_bounds(timezone, now)
        try:
            count = await self._count_for_recipient(recipient_id, message_type, start, end)
        except Exception as e:
            logger.warning(
                "Failed to check engagement log for recipient, continuing",
                recipient_id=recipient_id,
                message_type=str(message_type),
                error=str(e),
            )
            return False

        return count > 0

    async def record_sent(
        self, recipient_id: str, message_type: MessageType, sent_at: datetime | None = None
    ) -> bool:
        """Append a ledger entry. Never raises; False means the write was lost."""
        entry = EngagementLogEntry(
            recipient_id=recipient_id,
            message_type=message_type,
            sent_at=sent_at or datetime.now(UTC),
        )
        try:
            await self._insert(entry)
        except Exception as e:
            logger.warning(
                "Failed to log sent message",
                recipient_id=recipient_id,
                message_type=str(message_type),
                error=str(e),
            )
            return False
        return True
