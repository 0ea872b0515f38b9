"""
Rider/vendor aggregates driven by order events: a delivery bumps the rider's
counter and rating, a review refreshes rider and vendor ratings.
Each event_id is applied at most once.
"""
import logging

from campus_eats.store import OrderStore

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
REVIEWED = "reviewed"
AGGREGATE_EVENT_TYPES = frozenset({DELIVERED, REVIEWED})


class MalformedEvent(Exception):
    """Event body is missing a field its type requires; retrying will not help."""


async def handle_order_event(store: OrderStore, data: dict) -> bool:
    """
    Apply one queued order event. Returns True if it changed aggregates,
    False for duplicates and event types with nothing to aggregate.
    """
    event_id = data.get("event_id")
    event_type = data.get("event_type")
    order_id = data.get("order_id")
    if not event_id or not order_id:
        raise MalformedEvent("event_id and order_id are required")

    if event_type == DELIVERED:
        rider_id = data.get("rider_id")
        if not rider_id:
            raise MalformedEvent(f"delivered event {event_id} has no rider_id")
        applied = await store.apply_delivery_event(event_id, rider_id)
    elif event_type == REVIEWED:
        applied = await store.apply_review_event(event_id, order_id)
    else:
        logger.debug("Nothing to aggregate for event_type=%s", event_type)
        return False

    if not applied:
        logger.info("Duplicate event_id=%s, skipped", event_id)
    return applied
