import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest

from _helper import BURGER, JOLLOF, MOI_MOI, PLANTAIN, STUDENT, VENDOR_ID, make_service, make_store
from campus_eats.errors import NotFound, ValidationError
from campus_eats.models import MenuItem, OrderFilter
from campus_eats.order_state import OrderStatus


def create(service, items, vendor_id=VENDOR_ID, location="Hall 5"):
    return asyncio.run(service.create_order(STUDENT, vendor_id, items, location))


def test_total_is_items_plus_delivery_fee(service):
    order = create(service, [(JOLLOF, 2)])
    assert order.status == OrderStatus.PENDING
    assert order.total_amount == Decimal("2500.00")
    assert order.delivery_fee == Decimal("100.00")
    assert order.rider_id is None and order.otp_code is None


def test_total_with_fractional_prices(service):
    order = create(service, [(JOLLOF, 1), (PLANTAIN, 3)])
    assert order.total_amount == Decimal("1200.00") + Decimal("350.50") * 3 + Decimal("100.00")


def test_delivery_fee_comes_from_config():
    service = make_service(delivery_fee=Decimal("250"))
    order = create(service, [(JOLLOF, 1)])
    assert order.total_amount == Decimal("1450.00")


def test_repeated_items_are_merged(service):
    order = create(service, [(JOLLOF, 1), (JOLLOF, 2)])
    assert len(order.items) == 1
    assert order.items[0].quantity == 3


def test_items_snapshot_price_and_name(store, service):
    order = create(service, [(JOLLOF, 2)])
    store.add_menu_item(MenuItem(id=JOLLOF, vendor_id=VENDOR_ID, name="Party Jollof", price=Decimal("1800.00")))

    reloaded = asyncio.run(service.get_order(order.id))
    assert reloaded.items[0].name == "Jollof Rice"
    assert reloaded.items[0].unit_price == Decimal("1200.00")
    assert reloaded.total_amount == Decimal("2500.00")


@pytest.mark.parametrize("items", [
    [],
    [(JOLLOF, 0)],
    [(JOLLOF, -1)],
    [(JOLLOF, 1), (PLANTAIN, 0)],
    [(JOLLOF, True)],
])
def test_bad_carts_are_rejected(service, items):
    with pytest.raises(ValidationError):
        create(service, items)


def test_blank_location_is_rejected(service):
    with pytest.raises(ValidationError):
        create(service, [(JOLLOF, 1)], location="   ")


def test_unknown_vendor_and_item(service):
    with pytest.raises(NotFound):
        create(service, [(JOLLOF, 1)], vendor_id="nowhere")
    with pytest.raises(NotFound):
        create(service, [("ghost-item", 1)])


def test_item_from_other_vendor_is_rejected(service):
    with pytest.raises(ValidationError):
        create(service, [(BURGER, 1)])


def test_unavailable_item_is_rejected(service):
    with pytest.raises(ValidationError):
        create(service, [(MOI_MOI, 1)])


def test_inactive_vendor_is_rejected():
    store = make_store()
    vendor = asyncio.run(store.get_vendor(VENDOR_ID))
    store.add_vendor(replace(vendor, is_active=False))
    with pytest.raises(ValidationError):
        create(make_service(store=store), [(JOLLOF, 1)])


def test_failed_create_persists_nothing(store, service):
    with pytest.raises(ValidationError):
        create(service, [(JOLLOF, 1), (MOI_MOI, 1)])
    assert asyncio.run(store.list_orders(OrderFilter())) == []


def test_list_orders_newest_first(service):
    first = create(service, [(JOLLOF, 1)])
    second = create(service, [(PLANTAIN, 1)])
    orders = asyncio.run(service.list_orders(OrderFilter(customer_id=STUDENT)))
    assert [o.id for o in orders] == [second.id, first.id]


def test_quantity_above_line_limit_is_rejected(service):
    with pytest.raises(ValidationError):
        create(service, [(JOLLOF, 3_000_000_000)])
    with pytest.raises(ValidationError):
        create(service, [(JOLLOF, 30), (JOLLOF, 30)])
    assert create(service, [(JOLLOF, 50)]).items[0].quantity == 50


def test_total_beyond_storable_amount_is_rejected():
    service = make_service(max_item_quantity=100_000_000)
    with pytest.raises(ValidationError):
        create(service, [(JOLLOF, 10_000_000)])
