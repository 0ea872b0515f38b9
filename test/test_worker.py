import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from _helper import RIDER_A, make_store
from campus_eats import worker
from campus_eats.queue import ORDER_EVENTS_DLQ_KEY, ORDER_EVENTS_QUEUE_KEY
from campus_eats.stats import MalformedEvent, handle_order_event


def delivered_event(event_id="evt-1", attempts=0):
    return {
        "event_id": event_id,
        "order_id": "order-1",
        "event_type": "delivered",
        "rider_id": RIDER_A,
        "vendor_id": "mama-put",
        "attempts": attempts,
    }


def test_delivery_event_applied_once():
    store = make_store()

    async def scenario():
        first = await handle_order_event(store, delivered_event())
        again = await handle_order_event(store, delivered_event())
        return first, again, await store.get_rider_profile(RIDER_A)

    first, again, profile = asyncio.run(scenario())
    assert first is True
    assert again is False
    assert profile.total_deliveries == 1


def test_events_without_aggregates_are_ignored():
    store = make_store()
    body = {**delivered_event(), "event_type": "picked_up"}
    assert asyncio.run(handle_order_event(store, body)) is False


@pytest.mark.parametrize("body", [
    {"event_type": "delivered", "order_id": "order-1", "rider_id": RIDER_A},
    {**delivered_event(), "rider_id": None},
])
def test_malformed_events(body):
    with pytest.raises(MalformedEvent):
        asyncio.run(handle_order_event(make_store(), body))


def failing_store():
    store = MagicMock()
    store.apply_delivery_event = AsyncMock(side_effect=RuntimeError("db down"))
    return store


def test_failed_event_is_requeued_with_next_attempt():
    r = AsyncMock()

    async def scenario():
        await worker.process_one_redis(
            r, failing_store(), json.dumps(delivered_event(attempts=1)), asyncio.Semaphore(1), backoff_base=0.0,
        )

    with patch.object(worker.settings, "worker_max_retries", 3):
        asyncio.run(scenario())

    r.lpush.assert_awaited_once()
    key, raw = r.lpush.await_args.args
    assert key == ORDER_EVENTS_QUEUE_KEY
    assert json.loads(raw)["attempts"] == 2


def test_exhausted_event_goes_to_dlq():
    r = AsyncMock()

    async def scenario():
        await worker.process_one_redis(
            r, failing_store(), json.dumps(delivered_event(attempts=2)), asyncio.Semaphore(1), backoff_base=0.0,
        )

    with patch.object(worker.settings, "worker_max_retries", 3):
        asyncio.run(scenario())

    key, raw = r.lpush.await_args.args
    assert key == ORDER_EVENTS_DLQ_KEY
    dead = json.loads(raw)
    assert dead["attempts"] == 3
    assert dead["last_error"] == "db down"


def test_malformed_and_unparseable_messages_are_dropped():
    r = AsyncMock()
    store = make_store()

    async def scenario():
        sem = asyncio.Semaphore(1)
        await worker.process_one_redis(r, store, "{not json", sem)
        await worker.process_one_redis(r, store, json.dumps({"event_type": "delivered"}), sem)

    asyncio.run(scenario())
    r.lpush.assert_not_awaited()


def test_sqs_message_deleted_after_success():
    store = make_store()

    async def scenario():
        await worker.process_one_sqs(store, json.dumps(delivered_event()), "rh-1", 1, asyncio.Semaphore(1))

    with patch.object(worker, "delete_message") as delete, \
            patch.object(worker, "change_message_visibility") as change:
        asyncio.run(scenario())

    delete.assert_called_once_with("rh-1")
    change.assert_not_called()


def test_sqs_failure_extends_visibility():
    async def scenario():
        await worker.process_one_sqs(failing_store(), json.dumps(delivered_event()), "rh-2", 3, asyncio.Semaphore(1))

    with patch.object(worker, "delete_message") as delete, \
            patch.object(worker, "change_message_visibility") as change:
        asyncio.run(scenario())

    delete.assert_not_called()
    change.assert_called_once_with("rh-2", 8)
