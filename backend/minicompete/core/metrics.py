"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at the /metrics endpoint of the API and,
optionally, on a dedicated port in the worker process.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Registration metrics
registration_attempts = Counter(
    'registration_attempts_total',
    'Total registration attempts',
    ['outcome']  # success, replayed, or an ErrorKind value
)

registration_latency = Histogram(
    'registration_latency_seconds',
    'Registration request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

# Distributed lock metrics
lock_acquisitions = Counter(
    'competition_lock_acquisitions_total',
    'Competition lock acquisition attempts',
    ['result']  # acquired, busy, bypassed
)

lock_release_mismatches = Counter(
    'competition_lock_release_mismatch_total',
    'Lock releases that found another holder (TTL expired mid-transaction)'
)

# Database metrics
transaction_retries = Counter(
    'registration_transaction_retries_total',
    'Serializable transaction retries after serialization failures'
)

transaction_timeouts = Counter(
    'registration_transaction_timeouts_total',
    'Registration transactions aborted by the transaction timeout'
)

# Idempotency metrics
idempotency_replays = Counter(
    'idempotency_replays_total',
    'Requests answered from a stored idempotency record'
)

# Notification metrics
notification_jobs_enqueued = Counter(
    'notification_jobs_enqueued_total',
    'Notification jobs enqueued',
    ['job_name']
)

notification_enqueue_errors = Counter(
    'notification_enqueue_errors_total',
    'Notification jobs that could not be enqueued after a committed registration'
)

notification_jobs_processed = Counter(
    'notification_jobs_processed_total',
    'Notification jobs processed by the worker',
    ['job_name', 'outcome']  # success, skipped, retry, dead_lettered
)

dead_letter_write_errors = Counter(
    'dead_letter_write_errors_total',
    'Failed attempts to persist a FailedJob record'
)

# Redis health
redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

redis_circuit_breaker_open = Gauge(
    'redis_circuit_breaker_open',
    'Redis lock circuit breaker state (1=open, 0=closed)'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_registration_attempt(outcome: str):
    registration_attempts.labels(outcome=outcome).inc()


def record_lock_acquisition(result: str):
    """Result: acquired, busy, bypassed"""
    lock_acquisitions.labels(result=result).inc()


def record_notification_processed(job_name: str, outcome: str):
    notification_jobs_processed.labels(job_name=job_name, outcome=outcome).inc()
