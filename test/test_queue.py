import asyncio
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from prometheus_client import REGISTRY

from _helper import RIDER_A, STUDENT, VENDOR_ID, VENDOR_USER, advance_to_ready, deliver, place_jollof_order
from campus_eats import queue, views
from campus_eats.config import settings
from campus_eats.notifier import OrderEvent
from campus_eats.order_state import ActorRole, OrderStatus
from campus_eats.queue import ORDER_EVENTS_DLQ_KEY, ORDER_EVENTS_QUEUE_KEY, EventSink, replay_redis_dlq


def enqueue_failures() -> float:
    return REGISTRY.get_sample_value("events_enqueue_failed_total") or 0.0


def delivered_event(service):
    async def scenario():
        order = await place_jollof_order(service)
        await advance_to_ready(service, order.id)
        await service.claim_order(order.id, RIDER_A)
        return await deliver(service, order.id, RIDER_A)

    order = asyncio.run(scenario())
    return OrderEvent(event_type="delivered", order=order, previous_status=OrderStatus.IN_TRANSIT, previous_rider_id=RIDER_A)


def test_event_sink_pushes_to_redis_list(service):
    event = delivered_event(service)
    r = AsyncMock()

    with patch.object(settings, "sqs_queue_url", None), patch.object(queue, "get_redis", AsyncMock(return_value=r)):
        asyncio.run(EventSink().push(event))

    key, raw = r.lpush.await_args.args
    assert key == ORDER_EVENTS_QUEUE_KEY
    body = json.loads(raw)
    assert body["event_id"] == event.event_id
    assert body["rider_id"] == RIDER_A
    assert body["vendor_id"] == VENDOR_ID
    assert body["attempts"] == 0


def test_event_sink_failure_is_counted_not_raised(service):
    event = delivered_event(service)
    before = enqueue_failures()

    with patch.object(queue, "push_to_queue", AsyncMock(side_effect=ConnectionError("redis down"))):
        asyncio.run(EventSink().push(event))

    assert enqueue_failures() - before == 1


def test_inline_sink_failure_keeps_the_transition(store, service):
    before = enqueue_failures()

    async def scenario():
        order = await place_jollof_order(service)
        await advance_to_ready(service, order.id)
        await service.claim_order(order.id, RIDER_A)
        with patch.object(store, "apply_delivery_event", AsyncMock(side_effect=RuntimeError("db down"))):
            delivered = await deliver(service, order.id, RIDER_A)
        return delivered, await store.get_order(order.id)

    delivered, stored = asyncio.run(scenario())
    assert delivered.status == OrderStatus.DELIVERED
    assert stored.status == OrderStatus.DELIVERED
    assert enqueue_failures() - before == 1


def test_replay_dlq_resets_attempts_and_skips_garbage():
    dead = {"event_id": "evt-9", "event_type": "delivered", "attempts": 5,
            "last_error": "db down", "failed_at": "2026-01-01T00:00:00+00:00"}
    r = AsyncMock()
    r.rpop.side_effect = [json.dumps(dead), "{bad", None]

    with patch.object(queue, "get_redis", AsyncMock(return_value=r)):
        replayed = asyncio.run(replay_redis_dlq(limit=10))

    assert replayed == 2
    r.rpop.assert_awaited_with(ORDER_EVENTS_DLQ_KEY)
    r.lpush.assert_awaited_once()
    key, raw = r.lpush.await_args.args
    assert key == ORDER_EVENTS_QUEUE_KEY
    assert json.loads(raw) == {"event_id": "evt-9", "event_type": "delivered", "attempts": 0}


def test_replay_dlq_stops_at_limit():
    r = AsyncMock()
    r.rpop.return_value = json.dumps({"event_id": "evt-1", "attempts": 3})

    with patch.object(queue, "get_redis", AsyncMock(return_value=r)):
        assert asyncio.run(replay_redis_dlq(limit=2)) == 2
    assert r.lpush.await_count == 2


def test_vendor_summary_counts(store, service):
    async def scenario():
        waiting = await place_jollof_order(service)
        confirmed = await place_jollof_order(service)
        cooking = await place_jollof_order(service)
        cancelled = await place_jollof_order(service)
        await service.apply_transition(confirmed.id, ActorRole.VENDOR, VENDOR_USER, OrderStatus.CONFIRMED)
        await service.apply_transition(cooking.id, ActorRole.VENDOR, VENDOR_USER, OrderStatus.CONFIRMED)
        await service.apply_transition(cooking.id, ActorRole.VENDOR, VENDOR_USER, OrderStatus.PREPARING)
        await service.apply_transition(cancelled.id, ActorRole.STUDENT, STUDENT, OrderStatus.CANCELLED)
        assert waiting.status == OrderStatus.PENDING
        today = datetime.now(timezone.utc).date()
        return (
            await views.vendor_summary(store, VENDOR_ID, today=today),
            await views.vendor_summary(store, VENDOR_ID, today=date(2000, 1, 1)),
        )

    summary, long_ago = asyncio.run(scenario())
    assert summary.total_orders == 4
    assert summary.pending_orders == 2
    assert summary.today_revenue == Decimal("7500.00")
    assert long_ago.today_revenue == Decimal("0.00")
    assert summary.to_dict()["today_revenue"] == "7500.00"
