from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

InsightKind = Literal["morning", "evening"]

DEFAULT_MORNING_TIME = "08:00"
DEFAULT_EVENING_TIME = "20:00"


class NotificationSettings(BaseModel):
    """notification_settings JSONB on the user row. Missing fields mean enabled."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    morning_enabled: bool = True
    evening_enabled: bool = True
    morning_time: str = DEFAULT_MORNING_TIME
    evening_time: str = DEFAULT_EVENING_TIME
    reminders_enabled: bool = True

    @field_validator("enabled", "morning_enabled", "evening_enabled", "reminders_enabled", mode="before")
    @classmethod
    def _null_means_enabled(cls, value: Any) -> Any:
        return True if value is None else value

    @field_validator("morning_time", mode="before")
    @classmethod
    def _default_morning(cls, value: Any) -> Any:
        return DEFAULT_MORNING_TIME if value is None else value

    @field_validator("evening_time", mode="before")
    @classmethod
    def _default_evening(cls, value: Any) -> Any:
        return DEFAULT_EVENING_TIME if value is None else value

    @classmethod
    def from_raw(cls, raw: dict[str, Any] | None) -> "NotificationSettings":
        return cls.model_validate(raw or {})

    def kind_enabled(self, kind: InsightKind) -> bool:
        if not self.enabled:
            return False
        return self.morning_enabled if kind == "morning" else self.evening_enabled

    def time_for(self, kind: InsightKind) -> str:
        return self.morning_time if kind == "morning" else self.evening_time


@dataclass(slots=True)
class DispatchableUser:
    """User matched by one dispatch sweep. Rebuilt on every run, never cached."""

    id: str
    timezone: str
    external_id: int
    display_name: str | None
    language_code: str


@dataclass(slots=True)
class Recipient:
    """Eligible recipient of a fixed-time engagement batch."""

    recipient_id: str
    external_id: int
    display_name: str | None
    language_code: str = "ru"


@dataclass(slots=True)
class UserRecord:
    """Subset of the user/profile store read by the engagement core."""

    id: str
    external_id: int | None
    display_name: str | None
    language_code: str
    timezone: str | None
    notification_settings: dict[str, Any] | None
    last_seen_at: datetime | None = None
    goals: list[str] | None = None
