"""
Alerts Module
=============
Suppression decisions and grouping for incoming alerts.

Features:
- Maintenance windows (one-off and recurring)
- Duplicate detection
- Per-rule and scoped rate limits
- Custom condition rules
- Alert grouping
"""

from .context import AlertContext
from .suppression import SuppressionDecision, SuppressionEngine, log_decision, suppression_stats
from .grouping import AlertGrouper, group_key

__all__ = [
    "AlertContext",
    "SuppressionDecision",
    "SuppressionEngine",
    "log_decision",
    "suppression_stats",
    "AlertGrouper",
    "group_key",
]
