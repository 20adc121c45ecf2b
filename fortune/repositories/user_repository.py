"""
Read-only access to the user/profile store.

Only base eligibility filters live here (linkage, ban, onboarding, opt-in
flags). Timezone matching and ledger dedup happen in the engagement layer.
"""

from datetime import datetime
from typing import Any

from fortune.db.pool import DatabasePoolManager
from fortune.infrastructure.observability.logging import get_logger
from fortune.models.domain.user_domain import UserRecord

logger = get_logger(__name__)

# Linked to the bot, not banned, finished onboarding
_BASE_FILTER = """
    is_telegram_linked = TRUE
    AND is_banned = FALSE
    AND onboarding_completed = TRUE
    AND telegram_id IS NOT NULL
"""

_NOTIFICATIONS_ON = "COALESCE((notification_settings->>'enabled')::boolean, TRUE)"
_REMINDERS_ON = "COALESCE((notification_settings->>'reminders_enabled')::boolean, TRUE)"

_SELECT = """
    SELECT id, telegram_id, display_name, language_code, timezone,
           notification_settings, last_seen_at, goals
    FROM unified_users
"""


class UserRepositoryError(Exception):
    """Raised when a candidate query fails."""

    def __init__(self, message: str, operation: str):
        super().__init__(message)
        self.operation = operation


def _row_to_user(row: dict[str, Any]) -> UserRecord:
    return UserRecord(
        id=str(row["id"]),
        external_id=row.get("telegram_id"),
        display_name=row.get("display_name"),
        language_code=row.get("language_code") or "ru",
        timezone=row.get("timezone"),
        notification_settings=row.get("notification_settings"),
        last_seen_at=row.get("last_seen_at"),
        goals=row.get("goals"),
    )


class UserRepository:
    def __init__(self, db: DatabasePoolManager):
        self.db = db

    async def _query(self, operation: str, where: str, params: tuple = ()) -> list[UserRecord]:
        try:
            rows = await self.db.fetch_all(f"{_SELECT} WHERE {where}", params)
        except Exception as e:
            logger.error("Failed to query users", operation=operation, error=str(e))
            raise UserRepositoryError(f"Failed to query users: {e}", operation=operation) from e
        return [_row_to_user(row) for row in rows]

    async def list_dispatch_candidates(self) -> list[UserRecord]:
        """Users the timezone dispatcher evaluates every hour."""
        return await self._query("list_dispatch_candidates", _BASE_FILTER)

    async def list_inactive_candidates(self, inactive_since: datetime) -> list[UserRecord]:
        return await self._query(
            "list_inactive_candidates",
            f"{_BASE_FILTER} AND {_NOTIFICATIONS_ON} AND {_REMINDERS_ON} AND last_seen_at < %s",
            (inactive_since,),
        )

    async def list_checkin_candidates(self) -> list[UserRecord]:
        return await self._query("list_checkin_candidates", f"{_BASE_FILTER} AND {_NOTIFICATIONS_ON}")

    async def list_fortune_candidates(self) -> list[UserRecord]:
        return await self._query(
            "list_fortune_candidates",
            f"{_BASE_FILTER} AND {_NOTIFICATIONS_ON} AND 'spiritual' = ANY(goals)",
        )
