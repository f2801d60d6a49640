"""Prometheus metric definitions for the monetization service."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


purchases_initialized_total = Counter(
    "purchases_initialized_total", "Purchases recorded as pending", ["service", "purchase_type"]
)
purchases_completed_total = Counter(
    "purchases_completed_total", "Purchases transitioned to completed", ["service", "purchase_type"]
)
purchases_failed_total = Counter(
    "purchases_failed_total", "Purchases transitioned to failed", ["service", "purchase_type"]
)
duplicate_verifications_skipped_total = Counter(
    "duplicate_verifications_skipped_total",
    "Verify calls short-circuited because the purchase was already completed",
    ["service", "source"],
)
activations_total = Counter(
    "activations_total", "Activation attempts by type and outcome", ["service", "purchase_type", "outcome"]
)
webhook_events_total = Counter(
    "webhook_events_total", "Gateway webhook deliveries by event and outcome", ["service", "event", "outcome"]
)
gateway_request_seconds = Histogram(
    "gateway_request_seconds", "Payment gateway call latency seconds", ["service", "operation"]
)
gateway_errors_total = Counter(
    "gateway_errors_total", "Payment gateway failures and timeouts", ["service", "operation"]
)
quota_denied_total = Counter("quota_denied_total", "Quota checks that denied the action", ["service", "quota"])
boost_pool_size = Histogram(
    "boost_pool_size",
    "Candidate pool size fetched for an aggressive boost",
    ["service"],
    buckets=(0, 1, 5, 10, 20, 30, 40, 50),
)
boost_notified_users = Histogram(
    "boost_notified_users",
    "Users selected for one aggressive boost notification",
    ["service"],
    buckets=(0, 1, 2, 5, 8, 10),
)
spam_counter_updates_total = Counter(
    "spam_counter_updates_total", "Boost spam-counter updates by outcome", ["service", "outcome"]
)
subscriptions_downgraded_total = Counter(
    "subscriptions_downgraded_total", "Expired premium subscriptions downgraded", ["service"]
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
events_published_total = Counter(
    "events_published_total", "Outbox events acknowledged by Kafka", ["service", "topic"]
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
