"""Shared constants for onboardkit."""

DEFAULT_PROGRESS_TTL_SECONDS = 3600
DEFAULT_CACHE_KEY_PREFIX = "onboardkit:progress"

# Payload key holding the highest percentage ever computed for a session
WATERMARK_KEY = "last_percentage"
PHASE_TIMINGS_KEY = "phaseTimings"
PAYLOAD_VERSION = 1

DEFAULT_ACTIVITY_EXTENSION_MINUTES = 60
DEFAULT_RETENTION_DAYS = 90
DEFAULT_WATERMARK_MAX_ATTEMPTS = 5
DEFAULT_RETRY_BASE_DELAY = 0.01

SESSION_RESOURCE = "OnboardingSession"

ACTION_SESSION_CREATED = "SESSION_CREATED"
ACTION_STATUS_CHANGED = "SESSION_STATUS_CHANGED"
ACTION_SESSION_ABANDONED = "SESSION_ABANDONED"
ACTION_SESSION_EXPIRED = "SESSION_EXPIRED"
ACTION_PROGRESS_UPDATED = "SESSION_PROGRESS_UPDATED"
ACTION_SESSION_DELETED = "SESSION_DELETED"
