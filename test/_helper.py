"""
Shared fixtures data and helpers for the test modules.
Seeds an in-process store with one student pair, two vendors and two riders.
"""
from decimal import Decimal

from campus_eats.config import Settings
from campus_eats.memory_store import InMemoryOrderStore
from campus_eats.models import MenuItem, Order, Vendor
from campus_eats.notifier import LocalNotifier
from campus_eats.order_state import ActorRole, OrderStatus
from campus_eats.queue import InlineEventSink
from campus_eats.service import OrderService

STUDENT = "student-ada"
OTHER_STUDENT = "student-bola"
VENDOR_USER = "vendor-user-mama"
OTHER_VENDOR_USER = "vendor-user-grill"
RIDER_A = "rider-a"
RIDER_B = "rider-b"

VENDOR_ID = "mama-put"
OTHER_VENDOR_ID = "campus-grill"

JOLLOF = "jollof-rice"
PLANTAIN = "fried-plantain"
MOI_MOI = "moi-moi"
BURGER = "grill-burger"

VENDOR_STEPS = [OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY]
RIDER_STEPS = [OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED]


def make_settings(**overrides) -> Settings:
    values = {
        "store_backend": "memory",
        "notifier_backend": "memory",
        "delivery_fee": Decimal("100"),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_store() -> InMemoryOrderStore:
    store = InMemoryOrderStore()
    store.add_user(STUDENT, ActorRole.STUDENT)
    store.add_user(OTHER_STUDENT, ActorRole.STUDENT)
    store.add_user(RIDER_A, ActorRole.RIDER)
    store.add_user(RIDER_B, ActorRole.RIDER)
    store.add_vendor(Vendor(id=VENDOR_ID, user_id=VENDOR_USER, name="Mama Put", location="Hall 3"))
    store.add_vendor(Vendor(id=OTHER_VENDOR_ID, user_id=OTHER_VENDOR_USER, name="Campus Grill", location="SUB"))
    store.add_menu_item(MenuItem(id=JOLLOF, vendor_id=VENDOR_ID, name="Jollof Rice", price=Decimal("1200.00")))
    store.add_menu_item(MenuItem(id=PLANTAIN, vendor_id=VENDOR_ID, name="Fried Plantain", price=Decimal("350.50")))
    store.add_menu_item(MenuItem(id=MOI_MOI, vendor_id=VENDOR_ID, name="Moi Moi", price=Decimal("400.00"), is_available=False))
    store.add_menu_item(MenuItem(id=BURGER, vendor_id=OTHER_VENDOR_ID, name="Burger", price=Decimal("1500.00")))
    return store


def make_service(store=None, notifier=None, **overrides) -> OrderService:
    store = store or make_store()
    return OrderService(
        store,
        notifier or LocalNotifier(queue_size=100),
        events=InlineEventSink(store),
        config=make_settings(**overrides),
    )


async def place_jollof_order(service: OrderService, customer_id: str = STUDENT) -> Order:
    return await service.create_order(
        customer_id=customer_id,
        vendor_id=VENDOR_ID,
        items=[(JOLLOF, 2)],
        delivery_location="Hall 5, Room 12",
        notes="Call on arrival",
    )


async def advance_to_ready(service: OrderService, order_id: str) -> Order:
    order = None
    for status in VENDOR_STEPS:
        order = await service.apply_transition(order_id, ActorRole.VENDOR, VENDOR_USER, status)
    return order


async def deliver(service: OrderService, order_id: str, rider_id: str) -> Order:
    order = None
    for status in RIDER_STEPS:
        order = await service.apply_transition(order_id, ActorRole.RIDER, rider_id, status)
    return order
