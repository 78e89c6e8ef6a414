"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
webhooks_received_total = Counter(
    "webhooks_received_total",
    "Total webhook deliveries that passed signature and parse checks",
    ["event_type", "outcome"],  # processed, duplicate, in_flight, failed, untracked
)

webhook_signature_rejected_total = Counter(
    "webhook_signature_rejected_total",
    "Total webhook deliveries rejected for a missing or invalid signature",
)

webhook_handler_failures_total = Counter(
    "webhook_handler_failures_total",
    "Total handler failures after the idempotency claim",
    ["handler"],
)

best_effort_failures_total = Counter(
    "best_effort_failures_total",
    "Total swallowed failures of non-critical side effects",
    ["effect"],
)

reconciliation_total = Counter(
    "reconciliation_total",
    "Reconciliation queue outcomes",
    ["outcome"],  # enqueued, resolved, retry, exhausted
)

ledger_rows_total = Counter(
    "ledger_rows_total",
    "Ledger rows appended",
    ["table", "transaction_type"],
)

paystack_requests_total = Counter(
    "paystack_requests_total",
    "Total Paystack API requests",
    ["method", "status"],
)

outbound_requests_total = Counter(
    "outbound_requests_total",
    "Fire-and-forget requests to notification/analytics services",
    ["service", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
webhook_processing_seconds = Histogram(
    "webhook_processing_seconds",
    "Webhook processing duration",
    ["event_type"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10],
)

paystack_request_duration_seconds = Histogram(
    "paystack_request_duration_seconds",
    "Paystack API request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)

# Gauges
reconciliation_pending = Gauge(
    "reconciliation_pending",
    "Reconciliation entries due for re-drive at the last scheduler run",
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
