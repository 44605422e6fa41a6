"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total reservation attempts',
    ['status']  # success, conflict, rejected, error
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Reservation request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

reservation_retries = Counter(
    'reservation_retry_attempts_total',
    'Reservation attempts restarted after a ticket id collision'
)

# Verification metrics
verification_attempts = Counter(
    'ticket_verifications_total',
    'Ticket verification attempts',
    ['result']  # verified, already_used, mismatch, malformed, not_found
)

# Cancellation metrics
cancellations = Counter(
    'booking_cancellations_total',
    'Booking cancellations',
    ['initiator']  # user, event
)

refund_outcomes = Counter(
    'refund_outcomes_total',
    'Refund outcomes recorded at cancellation time',
    ['status']  # none, pending, processed, failed
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

notification_failures = Counter(
    'notification_failures_total',
    'Notification deliveries that raised',
    ['kind']
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation_attempt(status: str):
    """Record reservation attempt. Status: success, conflict, rejected, error"""
    reservation_attempts.labels(status=status).inc()


def record_verification(result: str):
    verification_attempts.labels(result=result).inc()


def record_cancellation(initiator: str, count: int = 1):
    cancellations.labels(initiator=initiator).inc(count)


def record_refund_outcome(status: str, count: int = 1):
    refund_outcomes.labels(status=status).inc(count)


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
