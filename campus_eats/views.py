"""Read-only projections over the order store (dashboards' list queries)."""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from campus_eats.models import Order, OrderFilter, money
from campus_eats.order_state import ACTIVE_STATUSES, RIDER_ACTIVE_STATUSES, TERMINAL_STATUSES, OrderStatus
from campus_eats.store import OrderStore

# orders still waiting on the kitchen to start
AWAITING_VENDOR_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


@dataclass(frozen=True)
class VendorSummary:
    vendor_id: str
    total_orders: int
    pending_orders: int
    today_revenue: Decimal

    def to_dict(self) -> dict:
        return {
            "vendor_id": self.vendor_id,
            "total_orders": self.total_orders,
            "pending_orders": self.pending_orders,
            "today_revenue": str(self.today_revenue),
        }


async def available_deliveries(store: OrderStore, limit: Optional[int] = None) -> list[Order]:
    return await store.list_orders(OrderFilter(
        statuses=frozenset({OrderStatus.READY}),
        unassigned_only=True,
        limit=limit,
    ))


async def customer_orders(store: OrderStore, customer_id: str, active: Optional[bool] = None) -> list[Order]:
    statuses = None if active is None else (ACTIVE_STATUSES if active else TERMINAL_STATUSES)
    return await store.list_orders(OrderFilter(customer_id=customer_id, statuses=statuses))


async def rider_active_deliveries(store: OrderStore, rider_id: str) -> list[Order]:
    return await store.list_orders(OrderFilter(rider_id=rider_id, statuses=RIDER_ACTIVE_STATUSES))


async def rider_history(store: OrderStore, rider_id: str) -> list[Order]:
    # cancellation releases the rider, so only completed deliveries remain attributed
    return await store.list_orders(OrderFilter(rider_id=rider_id, statuses=frozenset({OrderStatus.DELIVERED})))


async def vendor_queue(store: OrderStore, vendor_id: str, active_only: bool = False) -> list[Order]:
    return await store.list_orders(OrderFilter(
        vendor_id=vendor_id,
        statuses=ACTIVE_STATUSES if active_only else None,
    ))


async def vendor_summary(store: OrderStore, vendor_id: str, today: Optional[date] = None) -> VendorSummary:
    """
    Dashboard header figures. Revenue counts orders placed on `today` (UTC)
    at their full total, cancelled orders excluded.
    """
    today = today or datetime.now(timezone.utc).date()
    orders = await store.list_orders(OrderFilter(vendor_id=vendor_id))
    revenue = sum(
        (o.total_amount for o in orders
         if o.status != OrderStatus.CANCELLED and o.created_at.astimezone(timezone.utc).date() == today),
        money(0),
    )
    return VendorSummary(
        vendor_id=vendor_id,
        total_orders=len(orders),
        pending_orders=sum(1 for o in orders if o.status in AWAITING_VENDOR_STATUSES),
        today_revenue=revenue,
    )
