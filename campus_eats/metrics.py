"""
Prometheus metrics: order transitions and claims (API), notifier fan-out,
order events processed/failed (worker), queue depth (SQS).
"""
from prometheus_client import Counter, Gauge, generate_latest

# API: order lifecycle
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
)
transitions_applied_total = Counter(
    "transitions_applied_total",
    "Total order status transitions committed",
    ["from_status", "to_status"],
)
transitions_rejected_total = Counter(
    "transitions_rejected_total",
    "Total transition requests rejected",
    ["reason"],
)
claims_total = Counter(
    "claims_total",
    "Rider claim attempts by outcome",
    ["outcome"],
)

# Change notifier
notifications_published_total = Counter(
    "notifications_published_total",
    "Order change events fanned out to subscription keys",
)
notifications_dropped_total = Counter(
    "notifications_dropped_total",
    "Order change events dropped for a full or failing subscriber",
)
live_subscriptions = Gauge(
    "live_subscriptions",
    "Currently open change-notifier subscriptions",
)
events_enqueue_failed_total = Counter(
    "events_enqueue_failed_total",
    "Order events that could not be pushed to the worker queue",
)

# Worker: processing outcomes
messages_processed_total = Counter(
    "messages_processed_total",
    "Total order events successfully processed",
)
messages_failed_total = Counter(
    "messages_failed_total",
    "Total order events that failed processing (retried or sent to DLQ)",
)
messages_dlq_total = Counter(
    "messages_dlq_total",
    "Total order events moved to DLQ after max retries",
)

# SQS queue depth (when using SQS) - backpressure / consumer lag
sqs_queue_messages_waiting = Gauge(
    "sqs_queue_messages_waiting",
    "Approximate number of messages waiting in SQS (main queue)",
)
sqs_queue_messages_in_flight = Gauge(
    "sqs_queue_messages_in_flight",
    "Approximate number of messages in flight (received but not yet deleted)",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
