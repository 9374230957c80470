"""
System Constants and Configuration Values

This module centralizes the timing windows, default caps and lookup tables used
by the alert decision engine. Every value can be overridden from the
environment (or a .env file loaded at start-up).

Usage:
    from alerting_core.constants import (
        DUPLICATE_WINDOW_MINUTES,
        EXPECTED_RESPONSE_MINUTES,
        ...
    )
"""

import os

# ============================================================================
# CONNECTIONS
# ============================================================================

DATABASE_URL = os.getenv("DATABASE_URL")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# ============================================================================
# SUPPRESSION WINDOWS
# ============================================================================

# Same-rule alerts still active within this window are duplicates
DUPLICATE_WINDOW_MINUTES = int(os.getenv("DUPLICATE_WINDOW_MINUTES", "30"))

# Trailing window for the per-rule max_alerts_per_hour check
RATE_LIMIT_WINDOW_MINUTES = int(os.getenv("RATE_LIMIT_WINDOW_MINUTES", "60"))

# Grouping window used when no grouping rule is configured
DEFAULT_GROUPING_WINDOW_MINUTES = int(os.getenv("DEFAULT_GROUPING_WINDOW_MINUTES", "60"))

# ============================================================================
# SCOPED RATE LIMIT DEFAULTS (alerts per window)
# ============================================================================

SCOPED_WINDOW_MINUTES = int(os.getenv("SCOPED_WINDOW_MINUTES", "60"))
TEAM_RATE_LIMIT = int(os.getenv("TEAM_RATE_LIMIT", "500"))
METRIC_RATE_LIMIT = int(os.getenv("METRIC_RATE_LIMIT", "100"))
GLOBAL_RATE_LIMIT = int(os.getenv("GLOBAL_RATE_LIMIT", "1000"))

SEVERITY_RATE_LIMITS = {
    "critical": int(os.getenv("CRITICAL_RATE_LIMIT", "10")),
    "high": int(os.getenv("HIGH_RATE_LIMIT", "20")),
    "medium": int(os.getenv("MEDIUM_RATE_LIMIT", "50")),
    "low": int(os.getenv("LOW_RATE_LIMIT", "100")),
    "info": int(os.getenv("INFO_RATE_LIMIT", "200")),
}

# ============================================================================
# RESPONSE EXPECTATIONS (minutes)
# ============================================================================

EXPECTED_RESPONSE_MINUTES = {
    "critical": 15,
    "high": 30,
    "medium": 60,
    "low": 240,
    "info": 480,
}
DEFAULT_EXPECTED_RESPONSE_MINUTES = 60

# ============================================================================
# RETENTION AND HOUSEKEEPING
# ============================================================================

SUPPRESSION_LOG_RETENTION_DAYS = int(os.getenv("SUPPRESSION_LOG_RETENTION_DAYS", "30"))
GROUP_RETENTION_HOURS = int(os.getenv("GROUP_RETENTION_HOURS", "24"))
RATE_LIMIT_GRACE_HOURS = int(os.getenv("RATE_LIMIT_GRACE_HOURS", "1"))

ESCALATION_SWEEP_INTERVAL_SECONDS = int(os.getenv("ESCALATION_SWEEP_INTERVAL_SECONDS", "60"))
HOUSEKEEPING_INTERVAL_MINUTES = int(os.getenv("HOUSEKEEPING_INTERVAL_MINUTES", "15"))

# ============================================================================
# CONCURRENCY
# ============================================================================

# Optimistic-lock conflicts are retried this many times before surfacing
MAX_CONFLICT_RETRIES = int(os.getenv("MAX_CONFLICT_RETRIES", "3"))

# Redis lock held by whichever instance runs the escalation sweep
SWEEP_LOCK_TIMEOUT_SECONDS = int(os.getenv("SWEEP_LOCK_TIMEOUT_SECONDS", "55"))

# ============================================================================
# DISPATCH
# ============================================================================

DISPATCH_QUEUE_KEY = os.getenv("DISPATCH_QUEUE_KEY", "alerting:dispatch_requests")
DISPATCH_QUEUE_MAX_LENGTH = int(os.getenv("DISPATCH_QUEUE_MAX_LENGTH", "10000"))
