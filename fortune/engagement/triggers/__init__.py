from fortune.engagement.triggers.daily_fortune import create_daily_fortune_message, find_daily_fortune_users
from fortune.engagement.triggers.inactive import create_inactive_reminder_message, find_inactive_users
from fortune.engagement.triggers.insights import (
    GeneratedInsight,
    generate_evening_insight,
    generate_morning_insight,
    get_static_evening_insight,
    get_static_morning_insight,
)
from fortune.engagement.triggers.weekly_checkin import create_weekly_checkin_message, find_weekly_checkin_users

__all__ = [
    "GeneratedInsight",
    "create_daily_fortune_message",
    "create_inactive_reminder_message",
    "create_weekly_checkin_message",
    "find_daily_fortune_users",
    "find_inactive_users",
    "find_weekly_checkin_users",
    "generate_evening_insight",
    "generate_morning_insight",
    "get_static_evening_insight",
    "get_static_morning_insight",
]
