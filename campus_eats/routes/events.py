"""
Live order changes over Server-Sent Events. Each connection is one
Change Notifier subscription; a client that misses events re-lists its orders.
"""
import json
from typing import AsyncIterator, Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from campus_eats.deps import get_actor, get_service
from campus_eats.errors import NotAuthorized
from campus_eats.models import Actor
from campus_eats.notifier import POOL_KEY, ChangeNotifier, customer_key, rider_key, vendor_key
from campus_eats.order_state import ActorRole
from campus_eats.service import OrderService

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SECONDS = 15.0

Channel = Literal["orders", "deliveries", "pool", "vendor"]


async def subscription_key(actor: Actor, channel: str, service: OrderService) -> str:
    """Map a requested channel to the notifier key the actor is allowed to read."""
    if channel == "orders" and actor.role == ActorRole.STUDENT:
        return customer_key(actor.id)
    if channel == "deliveries" and actor.role == ActorRole.RIDER:
        return rider_key(actor.id)
    if channel == "pool" and actor.role == ActorRole.RIDER:
        return POOL_KEY
    if channel == "vendor" and actor.role == ActorRole.VENDOR:
        vendor = await service.vendor_for_user(actor.id)
        return vendor_key(vendor.id)
    raise NotAuthorized(f"{actor.role.value} cannot subscribe to {channel}")


def format_sse(payload: dict) -> str:
    return (
        f"id: {payload['event_id']}\n"
        f"event: {payload['event_type']}\n"
        f"data: {json.dumps(payload)}\n\n"
    )


async def event_stream(request: Request, notifier: ChangeNotifier, key: str) -> AsyncIterator[str]:
    async with notifier.subscribe(key) as subscription:
        yield ": subscribed\n\n"
        while not await request.is_disconnected():
            payload = await subscription.get(timeout=KEEPALIVE_SECONDS)
            if payload is None:
                yield ": keepalive\n\n"
                continue
            yield format_sse(payload)


@router.get("/stream")
async def stream(
    request: Request,
    channel: Channel = Query(...),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> StreamingResponse:
    key = await subscription_key(actor, channel, service)
    return StreamingResponse(
        event_stream(request, service.notifier, key),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
