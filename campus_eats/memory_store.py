"""
In-process order store for development and tests (STORE_BACKEND=memory).
Same contract as the Postgres store: every check-and-write happens under one
asyncio.Lock, so conditional updates are indivisible.
"""
import asyncio
import itertools
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from campus_eats.models import MenuItem, NewOrder, Order, OrderFilter, Review, RiderProfile, Vendor, money
from campus_eats.order_state import ActorRole, OrderStatus
from campus_eats.store import OrderStore


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryOrderStore(OrderStore):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._roles: dict[str, ActorRole] = {}
        self._vendors: dict[str, Vendor] = {}
        self._menu: dict[str, MenuItem] = {}
        self._orders: dict[str, Order] = {}
        self._seq: dict[str, int] = {}  # insertion order breaks created_at ties
        self._counter = itertools.count()
        self._reviews: dict[str, Review] = {}
        self._riders: dict[str, RiderProfile] = {}
        self._processed: set[str] = set()

    # seeding (the catalog and identity tables are owned elsewhere)

    def add_user(self, user_id: str, role: ActorRole) -> None:
        self._roles[user_id] = role
        if role == ActorRole.RIDER:
            self._riders.setdefault(user_id, RiderProfile(user_id=user_id))

    def add_vendor(self, vendor: Vendor) -> Vendor:
        self._vendors[vendor.id] = vendor
        self._roles.setdefault(vendor.user_id, ActorRole.VENDOR)
        return vendor

    def add_menu_item(self, item: MenuItem) -> MenuItem:
        self._menu[item.id] = item
        return item

    # OrderStore

    async def get_user_role(self, user_id: str) -> Optional[ActorRole]:
        return self._roles.get(user_id)

    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        return self._vendors.get(vendor_id)

    async def get_vendor_by_user(self, user_id: str) -> Optional[Vendor]:
        return next((v for v in self._vendors.values() if v.user_id == user_id), None)

    async def get_menu_items(self, menu_item_ids: list[str]) -> dict[str, MenuItem]:
        return {i: self._menu[i] for i in menu_item_ids if i in self._menu}

    async def insert_order(self, new_order: NewOrder) -> Order:
        now = _now()
        order = Order(
            id=str(uuid.uuid4()),
            customer_id=new_order.customer_id,
            vendor_id=new_order.vendor_id,
            status=OrderStatus.PENDING,
            delivery_location=new_order.delivery_location,
            delivery_notes=new_order.delivery_notes,
            total_amount=new_order.total_amount,
            delivery_fee=new_order.delivery_fee,
            created_at=now,
            updated_at=now,
            items=new_order.items,
        )
        async with self._lock:
            self._orders[order.id] = order
            self._seq[order.id] = next(self._counter)
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def list_orders(self, order_filter: OrderFilter) -> list[Order]:
        matched = [o for o in self._orders.values() if order_filter.matches(o)]
        matched.sort(key=lambda o: (o.created_at, self._seq[o.id]), reverse=True)
        if order_filter.limit is not None:
            matched = matched[:order_filter.limit]
        return matched

    async def update_status(
        self,
        order_id: str,
        expected_status: OrderStatus,
        new_status: OrderStatus,
    ) -> Optional[Order]:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None or current.status != expected_status:
                return None
            changes = {"status": new_status, "updated_at": _now()}
            if new_status == OrderStatus.CANCELLED:
                changes.update(rider_id=None, otp_code=None)
            updated = replace(current, **changes)
            self._orders[order_id] = updated
            return updated

    async def claim(self, order_id: str, rider_id: str, otp_code: str) -> Optional[Order]:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None or current.rider_id is not None or current.status != OrderStatus.READY:
                return None
            updated = replace(
                current,
                rider_id=rider_id,
                status=OrderStatus.ASSIGNED,
                otp_code=otp_code,
                updated_at=_now(),
            )
            self._orders[order_id] = updated
            return updated

    async def insert_review(self, order_id: str, customer_id: str, rating: int, comment: Optional[str]) -> Optional[Review]:
        async with self._lock:
            if order_id in self._reviews:
                return None
            review = Review(order_id=order_id, customer_id=customer_id, rating=rating, comment=comment, created_at=_now())
            self._reviews[order_id] = review
            return review

    async def get_rider_profile(self, user_id: str) -> Optional[RiderProfile]:
        return self._riders.get(user_id)

    async def apply_delivery_event(self, event_id: str, rider_id: str) -> bool:
        async with self._lock:
            if event_id in self._processed:
                return False
            self._processed.add(event_id)
            profile = self._riders.get(rider_id) or RiderProfile(user_id=rider_id)
            self._riders[rider_id] = replace(
                profile,
                total_deliveries=profile.total_deliveries + 1,
                rating=self._average(o for o in self._orders.values()
                                     if o.rider_id == rider_id and o.status == OrderStatus.DELIVERED),
            )
            return True

    async def apply_review_event(self, event_id: str, order_id: str) -> bool:
        async with self._lock:
            if event_id in self._processed:
                return False
            self._processed.add(event_id)
            order = self._orders.get(order_id)
            if order is None:
                return True
            if order.rider_id:
                profile = self._riders.get(order.rider_id) or RiderProfile(user_id=order.rider_id)
                self._riders[order.rider_id] = replace(
                    profile,
                    rating=self._average(o for o in self._orders.values()
                                         if o.rider_id == order.rider_id and o.status == OrderStatus.DELIVERED),
                )
            vendor = self._vendors.get(order.vendor_id)
            if vendor is not None:
                self._vendors[vendor.id] = replace(
                    vendor,
                    rating=self._average(o for o in self._orders.values() if o.vendor_id == vendor.id),
                )
            return True

    def _average(self, orders) -> Decimal:
        ratings = [self._reviews[o.id].rating for o in orders if o.id in self._reviews]
        if not ratings:
            return money(0)
        return money(Decimal(sum(ratings)) / len(ratings))
