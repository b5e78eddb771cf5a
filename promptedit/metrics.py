"""Prometheus metrics for the PromptEdit engine."""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

REQUESTS = Counter(
    'promptedit_requests_total',
    'Edit requests by action and outcome',
    ['action', 'outcome']
)

OPERATION_SECONDS = Histogram(
    'promptedit_operation_seconds',
    'Media operation latency',
    ['operation'],
    buckets=[0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600]
)

OPERATION_FAILURES = Counter(
    'promptedit_operation_failures_total',
    'Failed media operations',
    ['operation']
)

ACTIVE_PLANS = Gauge(
    'promptedit_active_plans',
    'Execution plans currently running'
)
