"""
Domain records. Orders are immutable snapshots; every change yields a new one
from the store.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from campus_eats.order_state import ActorRole, OrderStatus

MONEY_QUANT = Decimal("0.01")
MAX_ORDER_TOTAL = Decimal("9999999999.99")  # orders.total_amount is NUMERIC(12, 2)


def money(value: Any) -> Decimal:
    """Normalize to a 2-place Decimal (floats go through str to avoid binary noise)."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(MONEY_QUANT)


@dataclass(frozen=True)
class OrderItem:
    menu_item_id: str
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def from_record(cls, record) -> "OrderItem":
        return cls(
            menu_item_id=str(record["menu_item_id"]),
            name=record["item_name"],
            unit_price=money(record["unit_price"]),
            quantity=record["quantity"],
        )


@dataclass(frozen=True)
class Order:
    id: str
    customer_id: str
    vendor_id: str
    status: OrderStatus
    delivery_location: str
    total_amount: Decimal
    delivery_fee: Decimal
    created_at: datetime
    updated_at: datetime
    rider_id: Optional[str] = None
    delivery_notes: Optional[str] = None
    otp_code: Optional[str] = None
    items: tuple[OrderItem, ...] = ()

    @property
    def is_claimable(self) -> bool:
        """In the available-deliveries pool: ready and no rider yet."""
        return self.status == OrderStatus.READY and self.rider_id is None

    @classmethod
    def from_record(cls, record, items: tuple[OrderItem, ...] = ()) -> Optional["Order"]:
        """Build from an asyncpg row; None for an empty record."""
        if not record:
            return None
        return cls(
            id=str(record["id"]),
            customer_id=record["customer_id"],
            vendor_id=str(record["vendor_id"]),
            rider_id=record["rider_id"],
            status=OrderStatus(record["status"]),
            delivery_location=record["delivery_location"],
            delivery_notes=record["delivery_notes"],
            total_amount=money(record["total_amount"]),
            delivery_fee=money(record["delivery_fee"]),
            otp_code=record["otp_code"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            items=items,
        )

    def to_dict(self, include_otp: bool = False) -> dict:
        """JSON-safe view. The delivery code is only shown to the customer and the assigned rider."""
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "vendor_id": self.vendor_id,
            "rider_id": self.rider_id,
            "status": self.status.value,
            "delivery_location": self.delivery_location,
            "delivery_notes": self.delivery_notes,
            "total_amount": str(self.total_amount),
            "delivery_fee": str(self.delivery_fee),
            "otp_code": self.otp_code if include_otp else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "items": [
                {
                    "menu_item_id": item.menu_item_id,
                    "name": item.name,
                    "unit_price": str(item.unit_price),
                    "quantity": item.quantity,
                }
                for item in self.items
            ],
        }


@dataclass(frozen=True)
class MenuItem:
    id: str
    vendor_id: str
    name: str
    price: Decimal
    is_available: bool = True

    @classmethod
    def from_record(cls, record) -> "MenuItem":
        return cls(
            id=str(record["id"]),
            vendor_id=str(record["vendor_id"]),
            name=record["name"],
            price=money(record["price"]),
            is_available=record["is_available"],
        )


@dataclass(frozen=True)
class Vendor:
    id: str
    user_id: str
    name: str
    location: Optional[str] = None
    is_active: bool = True
    rating: Decimal = Decimal("0.00")

    @classmethod
    def from_record(cls, record) -> Optional["Vendor"]:
        if not record:
            return None
        return cls(
            id=str(record["id"]),
            user_id=record["user_id"],
            name=record["name"],
            location=record["location"],
            is_active=record["is_active"],
            rating=money(record["rating"]),
        )


@dataclass(frozen=True)
class RiderProfile:
    user_id: str
    total_deliveries: int = 0
    rating: Decimal = Decimal("0.00")

    @classmethod
    def from_record(cls, record) -> Optional["RiderProfile"]:
        if not record:
            return None
        return cls(
            user_id=record["user_id"],
            total_deliveries=record["total_deliveries"],
            rating=money(record["rating"]),
        )


@dataclass(frozen=True)
class Review:
    order_id: str
    customer_id: str
    rating: int
    created_at: datetime
    comment: Optional[str] = None

    @classmethod
    def from_record(cls, record) -> "Review":
        return cls(
            order_id=str(record["order_id"]),
            customer_id=record["customer_id"],
            rating=record["rating"],
            comment=record["comment"],
            created_at=record["created_at"],
        )

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Actor:
    """Caller identity as supplied by the auth provider plus the role lookup."""
    id: str
    role: ActorRole


@dataclass
class OrderFilter:
    customer_id: Optional[str] = None
    vendor_id: Optional[str] = None
    rider_id: Optional[str] = None
    statuses: Optional[frozenset[OrderStatus]] = None
    unassigned_only: bool = False
    limit: Optional[int] = None

    def matches(self, order: Order) -> bool:
        if self.customer_id is not None and order.customer_id != self.customer_id:
            return False
        if self.vendor_id is not None and order.vendor_id != self.vendor_id:
            return False
        if self.rider_id is not None and order.rider_id != self.rider_id:
            return False
        if self.statuses is not None and order.status not in self.statuses:
            return False
        if self.unassigned_only and order.rider_id is not None:
            return False
        return True


@dataclass(frozen=True)
class NewOrder:
    """Validated order ready to insert: totals already computed server-side."""
    customer_id: str
    vendor_id: str
    delivery_location: str
    delivery_notes: Optional[str]
    delivery_fee: Decimal
    total_amount: Decimal
    items: tuple[OrderItem, ...] = field(default_factory=tuple)
