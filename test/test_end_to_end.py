"""
Whole lifecycle through the service: a student orders two plates of jollof,
the vendor prepares them, two riders race for the delivery and the student
follows along live, then reviews.
"""
import asyncio
from decimal import Decimal

import pytest

from _helper import RIDER_A, RIDER_B, STUDENT, advance_to_ready, place_jollof_order
from campus_eats.errors import AlreadyClaimed, NotAuthorized, ValidationError
from campus_eats.notifier import customer_key
from campus_eats.order_state import ActorRole, OrderStatus


def test_jollof_order_from_cart_to_review(notifier, service, store):
    async def scenario():
        order = await place_jollof_order(service)
        assert order.total_amount == Decimal("2500.00")
        await advance_to_ready(service, order.id)
        assert [o.id for o in await service.available_deliveries()] == [order.id]

        async with notifier.subscribe(customer_key(STUDENT)) as live:
            results = await asyncio.gather(
                service.claim_order(order.id, RIDER_A),
                service.claim_order(order.id, RIDER_B),
                return_exceptions=True,
            )
            winner = next(r for r in results if not isinstance(r, Exception))
            assert sum(isinstance(r, AlreadyClaimed) for r in results) == 1

            for status in (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED):
                await service.apply_transition(order.id, ActorRole.RIDER, winner.rider_id, status)

            seen = [await live.get(timeout=1) for _ in range(4)]

        review = await service.submit_review(order.id, STUDENT, 5, "Still hot")
        profile = await store.get_rider_profile(winner.rider_id)
        history = await service.rider_history(winner.rider_id)
        vendor = await store.get_vendor(order.vendor_id)
        return winner, seen, review, profile, history, vendor

    winner, seen, review, profile, history, vendor = asyncio.run(scenario())

    assert [e["event_type"] for e in seen] == ["assigned", "picked_up", "in_transit", "delivered"]
    assert seen[0]["order"]["otp_code"] == winner.otp_code
    assert review.rating == 5
    assert profile.total_deliveries == 1
    assert profile.rating == Decimal("5.00")
    assert [o.status for o in history] == [OrderStatus.DELIVERED]
    assert vendor.rating == Decimal("5.00")


def test_review_rules(service):
    async def deliver_one():
        order = await place_jollof_order(service)
        await advance_to_ready(service, order.id)
        await service.claim_order(order.id, RIDER_A)
        for status in (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED):
            await service.apply_transition(order.id, ActorRole.RIDER, RIDER_A, status)
        return order

    order = asyncio.run(deliver_one())
    with pytest.raises(NotAuthorized):
        asyncio.run(service.submit_review(order.id, "student-bola", 4))
    with pytest.raises(ValidationError):
        asyncio.run(service.submit_review(order.id, STUDENT, 6))
    asyncio.run(service.submit_review(order.id, STUDENT, 4))
    with pytest.raises(ValidationError):
        asyncio.run(service.submit_review(order.id, STUDENT, 3))


def test_undelivered_order_cannot_be_reviewed(service):
    order = asyncio.run(place_jollof_order(service))
    with pytest.raises(ValidationError):
        asyncio.run(service.submit_review(order.id, STUDENT, 5))
