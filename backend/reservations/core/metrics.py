"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Booking lifecycle metrics
booking_transitions = Counter(
    'booking_transitions_total',
    'Booking lifecycle transitions',
    ['action']  # created, updated, confirmed, completed, cancelled, system_cancelled
)

booking_failures = Counter(
    'booking_failures_total',
    'Engine operations that returned an error result',
    ['kind']
)

booking_latency = Histogram(
    'booking_operation_latency_seconds',
    'Engine operation latency',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Allocation metrics
availability_checks = Counter(
    'availability_checks_total',
    'Availability calculations performed'
)

inventory_changes = Counter(
    'inventory_changes_total',
    'Inventory units touched by reconciliation',
    ['change']  # created, renamed, deleted
)

db_retries = Counter(
    'db_retry_attempts_total',
    'Allocation retries due to listing version conflicts'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_transition(action: str):
    booking_transitions.labels(action=action).inc()


def record_failure(kind: str):
    booking_failures.labels(kind=kind).inc()


def record_inventory_change(change: str, count: int = 1):
    if count:
        inventory_changes.labels(change=change).inc(count)


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
