"""
Push order events for the aggregates worker. Backend: Redis (LPUSH) or AWS SQS when SQS_QUEUE_URL is set.
With the in-process store there is no worker, so events are applied inline.
"""
import json
import logging

from campus_eats.config import settings
from campus_eats.metrics import events_enqueue_failed_total
from campus_eats.notifier import OrderEvent
from campus_eats.redis_client import get_redis
from campus_eats.sqs_client import send_message
from campus_eats.stats import handle_order_event
from campus_eats.store import OrderStore

logger = logging.getLogger(__name__)

ORDER_EVENTS_QUEUE_KEY = "queue:order_events"
ORDER_EVENTS_DLQ_KEY = "queue:order_events:dlq"


def _make_body(event: OrderEvent, attempts: int = 0) -> dict:
    return {
        "event_id": event.event_id,
        "order_id": event.order.id,
        "event_type": event.event_type,
        "rider_id": event.order.rider_id,
        "vendor_id": event.order.vendor_id,
        "occurred_at": event.occurred_at.isoformat(),
        "attempts": attempts,
    }


async def push_to_queue(body: dict) -> None:
    if settings.sqs_queue_url:
        await send_message(body)
    else:
        r = await get_redis()
        await r.lpush(ORDER_EVENTS_QUEUE_KEY, json.dumps(body))


class EventSink:
    """Hands committed order events to the aggregates worker."""

    async def push(self, event: OrderEvent) -> None:
        try:
            await push_to_queue(_make_body(event))
        except Exception as e:
            # order is already committed; aggregates lag until the event is replayed
            events_enqueue_failed_total.inc()
            logger.exception("Failed to enqueue event_id=%s (%s): %s", event.event_id, event.event_type, e)


class InlineEventSink(EventSink):
    """Applies events immediately against the same store (memory backend, tests)."""

    def __init__(self, store: OrderStore):
        self.store = store

    async def push(self, event: OrderEvent) -> None:
        try:
            await handle_order_event(self.store, _make_body(event))
        except Exception as e:
            # the status change is committed; only the aggregates are behind
            events_enqueue_failed_total.inc()
            logger.exception("Failed to apply event_id=%s (%s) inline: %s", event.event_id, event.event_type, e)


async def replay_redis_dlq(limit: int = 100) -> int:
    """Move up to `limit` events from the Redis DLQ back to the main queue with attempts reset."""
    r = await get_redis()
    replayed = 0
    while replayed < limit:
        raw = await r.rpop(ORDER_EVENTS_DLQ_KEY)
        if raw is None:
            break
        replayed += 1
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping unparseable DLQ entry")
            continue
        data.pop("last_error", None)
        data.pop("failed_at", None)
        data["attempts"] = 0
        await r.lpush(ORDER_EVENTS_QUEUE_KEY, json.dumps(data))
    return replayed
