import asyncio

from _helper import (
    RIDER_A,
    STUDENT,
    VENDOR_ID,
    VENDOR_USER,
    advance_to_ready,
    make_service,
    make_store,
    place_jollof_order,
)
from campus_eats.notifier import (
    POOL_KEY,
    LocalNotifier,
    OrderEvent,
    customer_key,
    rider_key,
    vendor_key,
)
from campus_eats.order_state import ActorRole, OrderStatus


async def drain(subscription) -> list[dict]:
    payloads = []
    while True:
        payload = await subscription.get(timeout=0.01)
        if payload is None:
            return payloads
        payloads.append(payload)


def test_changes_reach_customer_and_vendor_keys(notifier, service):
    async def scenario():
        async with notifier.subscribe(customer_key(STUDENT)) as customer, \
                notifier.subscribe(vendor_key(VENDOR_ID)) as vendor:
            order = await place_jollof_order(service)
            await service.apply_transition(order.id, ActorRole.VENDOR, VENDOR_USER, OrderStatus.CONFIRMED)
            return await drain(customer), await drain(vendor)

    customer_events, vendor_events = asyncio.run(scenario())
    assert [e["event_type"] for e in customer_events] == ["created", "confirmed"]
    assert [e["event_type"] for e in vendor_events] == ["created", "confirmed"]
    assert customer_events[1]["previous_status"] == "pending"


def test_other_customers_hear_nothing(notifier, service):
    async def scenario():
        async with notifier.subscribe(customer_key("student-bola")) as other:
            await place_jollof_order(service)
            return await drain(other)

    assert asyncio.run(scenario()) == []


def test_pool_hears_orders_enter_and_leave(notifier, service):
    async def scenario():
        async with notifier.subscribe(POOL_KEY) as pool:
            order = await place_jollof_order(service)
            await advance_to_ready(service, order.id)
            await service.claim_order(order.id, RIDER_A)
            return await drain(pool)

    events = asyncio.run(scenario())
    assert [e["event_type"] for e in events] == ["ready", "assigned"]
    assert all(e["order"]["otp_code"] is None for e in events)


def test_delivery_code_only_reaches_customer_and_rider(notifier, service):
    async def scenario():
        order = await place_jollof_order(service)
        await advance_to_ready(service, order.id)
        async with notifier.subscribe(customer_key(STUDENT)) as customer, \
                notifier.subscribe(vendor_key(VENDOR_ID)) as vendor, \
                notifier.subscribe(rider_key(RIDER_A)) as rider:
            claimed = await service.claim_order(order.id, RIDER_A)
            return claimed, await drain(customer), await drain(vendor), await drain(rider)

    claimed, customer, vendor, rider = asyncio.run(scenario())
    assert customer[0]["order"]["otp_code"] == claimed.otp_code
    assert rider[0]["order"]["otp_code"] == claimed.otp_code
    assert vendor[0]["order"]["otp_code"] is None


def test_released_rider_is_told_about_cancellation(notifier, service):
    async def scenario():
        order = await place_jollof_order(service)
        await advance_to_ready(service, order.id)
        await service.claim_order(order.id, RIDER_A)
        async with notifier.subscribe(rider_key(RIDER_A)) as rider:
            await service.apply_transition(order.id, ActorRole.VENDOR, VENDOR_USER, OrderStatus.CANCELLED)
            return await drain(rider)

    events = asyncio.run(scenario())
    assert [e["event_type"] for e in events] == ["cancelled"]
    assert events[0]["previous_rider_id"] == RIDER_A
    assert events[0]["order"]["rider_id"] is None


def test_event_keys():
    async def scenario():
        service = make_service()
        order = await place_jollof_order(service)
        ready = await advance_to_ready(service, order.id)
        return order, ready

    order, ready = asyncio.run(scenario())
    created = OrderEvent.for_change(None, order, event_type="created")
    assert created.keys() == [customer_key(STUDENT), vendor_key(VENDOR_ID)]
    became_ready = OrderEvent(event_type="ready", order=ready, previous_status=OrderStatus.PREPARING)
    assert POOL_KEY in became_ready.keys()


def test_full_subscriber_drops_without_blocking_publisher():
    notifier = LocalNotifier(queue_size=2)
    service = make_service(store=make_store(), notifier=notifier)

    async def scenario():
        async with notifier.subscribe(customer_key(STUDENT)) as slow:
            for _ in range(5):
                await place_jollof_order(service)
            return await drain(slow)

    received = asyncio.run(scenario())
    assert len(received) == 2


def test_unsubscribe_cleans_up():
    notifier = LocalNotifier()

    async def scenario():
        async with notifier.subscribe(POOL_KEY):
            async with notifier.subscribe(POOL_KEY):
                assert notifier.subscriber_count(POOL_KEY) == 2
            assert notifier.subscriber_count(POOL_KEY) == 1
        return notifier.subscriber_count(POOL_KEY)

    assert asyncio.run(scenario()) == 0
