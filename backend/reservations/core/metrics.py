"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts by outcome',
    ['outcome']  # committed, invalid, conflict, not_found, persistence_failed
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Latency of a full book() call',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0]
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Bookings cancelled and seats released'
)

# Ledger metrics
ledger_retries = Counter(
    'ledger_cas_retries_total',
    'Seat ledger compare-and-swap retries due to version conflicts'
)

reservation_rollbacks = Counter(
    'reservation_rollbacks_total',
    'Reservations released after the booking record could not be persisted',
    ['reason']  # error, timeout, cancelled
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss/error
)


def metrics_endpoint() -> Response:
    """Prometheus scrape payload."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(outcome: str):
    booking_attempts.labels(outcome=outcome).inc()


def record_rollback(reason: str):
    reservation_rollbacks.labels(reason=reason).inc()


def record_cache_operation(operation: str, result: str):
    cache_operations.labels(operation=operation, result=result).inc()
