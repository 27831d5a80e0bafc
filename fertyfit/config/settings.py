"""Application-wide configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

load_dotenv()

# Redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

# ── FertyScore ───────────────────────────────────────────────────────────

# Most recent daily logs read by the dynamic sub-scores
DYNAMIC_DAYS: int = int(os.getenv("DYNAMIC_DAYS", "14"))
# Logs fetched by the score recompute trigger
SCORE_LOG_FETCH_LIMIT: int = int(os.getenv("SCORE_LOG_FETCH_LIMIT", "30"))
# "scored_only" averages scored pillars, "zero_fill" always divides by 4
FERTYSCORE_MISSING_PILLAR_POLICY: str = os.getenv(
    "FERTYSCORE_MISSING_PILLAR_POLICY", "scored_only"
)
# Score records kept per user in the audit trail
SCORE_HISTORY_MAX: int = int(os.getenv("SCORE_HISTORY_MAX", "100"))

# ── Rule Engine ──────────────────────────────────────────────────────────

# Fertile-window notifications are suppressed above this age
FERTILITY_NOTIFICATION_MAX_AGE: int = int(
    os.getenv("FERTILITY_NOTIFICATION_MAX_AGE", "49")
)
DAILY_NOTIFICATION_LIMIT: int = int(os.getenv("DAILY_NOTIFICATION_LIMIT", "30"))
RULE_CONTEXT_LOG_LIMIT: int = int(os.getenv("RULE_CONTEXT_LOG_LIMIT", "30"))

# Cycle length used when the profile has none
DEFAULT_CYCLE_LENGTH: int = int(os.getenv("DEFAULT_CYCLE_LENGTH", "28"))
PERIOD_HISTORY_MAX: int = 12

# ── Server Configuration ─────────────────────────────────────────────────

SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
