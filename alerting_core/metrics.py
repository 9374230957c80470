"""
Prometheus Metrics Collection

Counters for the alert decision engine. Recording a metric never affects the
decision being recorded.

Usage:
    from alerting_core.metrics import SUPPRESSION_DECISIONS, increment_counter

    increment_counter(SUPPRESSION_DECISIONS, {"reason": "duplicate_alert"})
"""

import logging
from typing import Dict

from fastapi import FastAPI, Response
from prometheus_client import Counter, CONTENT_TYPE_LATEST, generate_latest

logger = logging.getLogger(__name__)


# ============================================================================
# METRIC DEFINITIONS
# ============================================================================

SUPPRESSION_DECISIONS = Counter(
    'alerting_suppression_decisions_total',
    'Suppression decisions by outcome reason',
    ['reason']
)

AUDIT_LOG_FAILURES = Counter(
    'alerting_audit_log_failures_total',
    'Failed writes of suppression log or alert history entries',
    ['log']  # suppression_log, alert_history
)

CONCURRENCY_RETRIES = Counter(
    'alerting_concurrency_retries_total',
    'Optimistic-lock conflicts retried',
    ['operation']
)

ROUTING_GAPS = Counter(
    'alerting_routing_gaps_total',
    'Alerts for which no responder could be resolved',
    ['severity']
)

ESCALATIONS = Counter(
    'alerting_escalations_total',
    'Escalation level transitions',
    ['severity', 'level']
)

AUTO_TRANSITIONS = Counter(
    'alerting_auto_transitions_total',
    'Alerts auto-acknowledged or auto-resolved by the sweeper',
    ['transition', 'severity']  # transition: acknowledged, resolved
)

DISPATCH_REQUESTS = Counter(
    'alerting_dispatch_requests_total',
    'Dispatch requests handed to the notification collaborator',
    ['status']  # queued, failed
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def increment_counter(counter, labels: Dict[str, str], amount: int = 1):
    """Safely increment a counter with labels"""
    try:
        counter.labels(**labels).inc(amount)
    except Exception as e:
        logger.debug(f"[METRICS] Failed to increment counter: {e}")


def setup_metrics(app: FastAPI):
    """Expose /metrics on the application"""

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    logger.info("[METRICS] Prometheus endpoint enabled at /metrics")
