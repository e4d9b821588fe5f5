"""
Prometheus metrics endpoint.

Exposes webhook delivery metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Delivery Job Metrics
# ============================================

webhook_jobs_enqueued = Counter(
    'webhook_jobs_enqueued_total',
    'Total webhook delivery jobs created',
    ['source']
)

webhook_jobs_claimed = Counter(
    'webhook_jobs_claimed_total',
    'Total webhook delivery jobs claimed by a worker pass'
)

webhook_jobs_released = Counter(
    'webhook_jobs_released_total',
    'Total stale webhook delivery claims returned to pending'
)

webhook_outcome_conflicts = Counter(
    'webhook_outcome_conflicts_total',
    'Outcome writes skipped because the claim was no longer current'
)

# ============================================
# Delivery Attempt Metrics
# ============================================

webhook_deliveries = Counter(
    'webhook_deliveries_total',
    'Total webhook delivery outcomes',
    ['outcome']
)

webhook_delivery_duration = Histogram(
    'webhook_delivery_duration_seconds',
    'Outbound webhook request duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

webhook_last_pass_claimed = Gauge(
    'webhook_last_pass_claimed',
    'Jobs claimed by the most recent worker pass'
)

# ============================================
# Backfill Metrics
# ============================================

webhook_backfill_created = Counter(
    'webhook_backfill_created_total',
    'Total jobs created by backfill runs'
)

webhook_backfill_errors = Counter(
    'webhook_backfill_errors_total',
    'Total (endpoint, event) pairs that failed during backfill'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_job_enqueued(source: str):
    """Record a job being created (event, backfill, replay, test)."""
    webhook_jobs_enqueued.labels(source=source).inc()


def track_pass(claimed: int, released: int):
    """Record the claim side of a worker pass."""
    webhook_jobs_claimed.inc(claimed)
    webhook_jobs_released.inc(released)
    webhook_last_pass_claimed.set(claimed)


def track_delivery(outcome: str, duration_seconds: float | None = None):
    """Record one delivery outcome (succeeded, retried, exhausted, failed)."""
    webhook_deliveries.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        webhook_delivery_duration.observe(duration_seconds)


def track_outcome_conflict():
    """Record an outcome write that lost its claim."""
    webhook_outcome_conflicts.inc()


def track_backfill(created: int, errors: int):
    """Record the result of a backfill run."""
    webhook_backfill_created.inc(created)
    webhook_backfill_errors.inc(errors)


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
