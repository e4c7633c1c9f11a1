"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
reconciliations_total = Counter(
    "reconciliations_total",
    "Reconciliation attempts by entry point and outcome",
    ["source", "outcome"],  # outcome: approved, cancelled, pending, renewed, idempotent, ignored, storage_error or an error code
)

verification_rejections_total = Counter(
    "verification_rejections_total",
    "Preapproval verifications rejected",
    ["reason"],
)

mercadopago_requests_total = Counter(
    "mercadopago_requests_total",
    "Total MercadoPago API requests",
    ["endpoint", "status"],
)

credits_consumed_total = Counter(
    "credits_consumed_total",
    "AI generation credits charged",
    ["tier"],
)

quota_rejected_total = Counter(
    "quota_rejected_total",
    "Generation requests refused by the quota gate",
    ["reason"],  # limit_reached, lost_race
)

webhook_auth_failures_total = Counter(
    "webhook_auth_failures_total",
    "Webhook deliveries rejected before processing",
    ["reason"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
mercadopago_request_duration_seconds = Histogram(
    "mercadopago_request_duration_seconds",
    "MercadoPago API request duration",
    ["endpoint"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
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
