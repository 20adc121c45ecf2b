"""Queue names and job defaults."""

# =============================================================================
# Queue Names
# =============================================================================

QUEUE_ANALYZE_PHOTO = "analyze-photo"
QUEUE_CHAT_REPLY = "chat-reply"
QUEUE_SEND_MESSAGE = "send-message"

# Fixed-time engagement batches
QUEUE_INACTIVE_REMINDER = "inactive-reminder"
QUEUE_WEEKLY_CHECKIN = "weekly-checkin"
QUEUE_DAILY_FORTUNE = "daily-fortune"

# Timezone-aware insights
QUEUE_INSIGHT_DISPATCH = "insight-dispatch"
QUEUE_MORNING_INSIGHT_SINGLE = "morning-insight-single"
QUEUE_EVENING_INSIGHT_SINGLE = "evening-insight-single"

# Maintenance
QUEUE_STALE_LOCK_CLEANUP = "stale-lock-cleanup"

# =============================================================================
# Timeouts / retry defaults
# =============================================================================

JOB_TIMEOUT_SECONDS = 5 * 60
DEFAULT_RETRY_LIMIT = 3
DEFAULT_RETRY_DELAY_SECONDS = 5
SEND_MESSAGE_RETRY_DELAY_SECONDS = 10  # longer for channel rate limits
INSIGHT_RETRY_DELAY_SECONDS = 60
INSIGHT_RETRY_LIMIT = 3

# Engagement batches run one trigger at a time and poll once a minute
ENGAGEMENT_POLLING_INTERVAL_SECONDS = 60.0
