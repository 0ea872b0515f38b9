"""
OrderService: the surface the API (or any presentation layer) calls.
Wires the store, Transition Engine, Assignment Resolver, Change Notifier and
the aggregates event sink together. Actor identity is always passed in
explicitly; nothing here reads ambient session state.
"""
import logging
from collections import OrderedDict
from typing import Iterable, Optional

from campus_eats import views
from campus_eats.assignment import AssignmentResolver
from campus_eats.config import Settings, settings as default_settings
from campus_eats.errors import NotAuthorized, NotFound, ValidationError
from campus_eats.metrics import orders_created_total
from campus_eats.models import (
    MAX_ORDER_TOTAL,
    Actor,
    NewOrder,
    Order,
    OrderFilter,
    OrderItem,
    Review,
    Vendor,
    money,
)
from campus_eats.notifier import ChangeNotifier, OrderEvent
from campus_eats.order_state import ActorRole, OrderStatus
from campus_eats.queue import EventSink
from campus_eats.stats import AGGREGATE_EVENT_TYPES, REVIEWED
from campus_eats.store import OrderStore
from campus_eats.transitions import TransitionEngine

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


class OrderService:
    def __init__(
        self,
        store: OrderStore,
        notifier: ChangeNotifier,
        events: Optional[EventSink] = None,
        config: Settings = default_settings,
    ):
        self.store = store
        self.notifier = notifier
        self.events = events
        self.config = config
        self.resolver = AssignmentResolver(store, self._emit, otp_length=config.otp_length)
        self.engine = TransitionEngine(
            store,
            self.resolver,
            self._emit,
            require_delivery_code=config.require_delivery_code,
        )

    async def _emit(self, event: OrderEvent) -> None:
        self.notifier.publish(event)
        if self.events is not None and event.event_type in AGGREGATE_EVENT_TYPES:
            await self.events.push(event)

    # identity

    async def resolve_actor(self, user_id: str) -> Actor:
        role = await self.store.get_user_role(user_id)
        if role is None:
            raise NotAuthorized(f"unknown user {user_id}")
        return Actor(id=user_id, role=role)

    async def vendor_for_user(self, user_id: str) -> Vendor:
        vendor = await self.store.get_vendor_by_user(user_id)
        if vendor is None:
            raise NotFound(f"no vendor profile for user {user_id}")
        return vendor

    # Order Store operations

    async def create_order(
        self,
        customer_id: str,
        vendor_id: str,
        items: Iterable[tuple[str, int]],
        delivery_location: str,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Create a `pending` order from (menu_item_id, quantity) pairs.

        Prices come from the vendor's current catalog and are frozen onto the
        order lines; total_amount = sum(quantity * unit_price) + delivery fee.
        Repeated menu items are merged. Raises ValidationError for an empty
        cart, a quantity outside 1..max_item_quantity, a total the orders
        table cannot hold, a blank location, an inactive vendor
        or an item that is unavailable or sold by another vendor, and
        NotFound for an unknown vendor or menu item.
        """
        quantities: OrderedDict[str, int] = OrderedDict()
        for menu_item_id, quantity in items:
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError(f"quantity for {menu_item_id} must be a positive integer")
            quantities[menu_item_id] = quantities.get(menu_item_id, 0) + quantity
        if not quantities:
            raise ValidationError("order must contain at least one item")
        for menu_item_id, quantity in quantities.items():
            if quantity > self.config.max_item_quantity:
                raise ValidationError(
                    f"at most {self.config.max_item_quantity} of {menu_item_id} per order"
                )

        location = (delivery_location or "").strip()
        if not location:
            raise ValidationError("delivery location is required")

        vendor = await self.store.get_vendor(vendor_id)
        if vendor is None:
            raise NotFound(f"vendor {vendor_id} not found")
        if not vendor.is_active:
            raise ValidationError(f"vendor {vendor.name} is not taking orders")

        catalog = await self.store.get_menu_items(list(quantities))
        lines: list[OrderItem] = []
        for menu_item_id, quantity in quantities.items():
            menu_item = catalog.get(menu_item_id)
            if menu_item is None:
                raise NotFound(f"menu item {menu_item_id} not found")
            if menu_item.vendor_id != vendor.id:
                raise ValidationError(f"{menu_item.name} is not sold by {vendor.name}")
            if not menu_item.is_available:
                raise ValidationError(f"{menu_item.name} is currently unavailable")
            lines.append(OrderItem(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                unit_price=menu_item.price,
                quantity=quantity,
            ))

        delivery_fee = money(self.config.delivery_fee)
        subtotal = sum((line.line_total for line in lines), money(0))
        total_amount = money(subtotal + delivery_fee)
        if total_amount > MAX_ORDER_TOTAL:
            raise ValidationError(f"order total {total_amount} exceeds the maximum of {MAX_ORDER_TOTAL}")
        order = await self.store.insert_order(NewOrder(
            customer_id=customer_id,
            vendor_id=vendor.id,
            delivery_location=location,
            delivery_notes=(notes or "").strip() or None,
            delivery_fee=delivery_fee,
            total_amount=total_amount,
            items=tuple(lines),
        ))
        orders_created_total.inc()
        logger.info("Order %s created for customer %s at vendor %s (total %s)",
                    order.id, customer_id, vendor.id, order.total_amount)
        await self._emit(OrderEvent.for_change(None, order, event_type="created"))
        return order

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found")
        return order

    async def get_order_for(self, actor: Actor, order_id: str) -> Order:
        """Order as seen by actor; parties outside the order get NotFound."""
        order = await self.get_order(order_id)
        if actor.role == ActorRole.STUDENT and order.customer_id == actor.id:
            return order
        if actor.role == ActorRole.RIDER and (order.rider_id == actor.id or order.is_claimable):
            return order
        if actor.role == ActorRole.VENDOR:
            vendor = await self.store.get_vendor(order.vendor_id)
            if vendor is not None and vendor.user_id == actor.id:
                return order
        raise NotFound(f"order {order_id} not found")

    async def list_orders(self, order_filter: OrderFilter) -> list[Order]:
        return await self.store.list_orders(order_filter)

    async def list_orders_for(self, actor: Actor, statuses: Optional[frozenset[OrderStatus]] = None) -> list[Order]:
        """The caller's own orders: placed (student), received (vendor) or delivering (rider)."""
        if actor.role == ActorRole.STUDENT:
            order_filter = OrderFilter(customer_id=actor.id, statuses=statuses)
        elif actor.role == ActorRole.VENDOR:
            vendor = await self.vendor_for_user(actor.id)
            order_filter = OrderFilter(vendor_id=vendor.id, statuses=statuses)
        else:
            order_filter = OrderFilter(rider_id=actor.id, statuses=statuses)
        return await self.store.list_orders(order_filter)

    # Query views

    async def available_deliveries(self, limit: Optional[int] = None) -> list[Order]:
        return await views.available_deliveries(self.store, limit)

    async def customer_orders(self, customer_id: str, active: Optional[bool] = None) -> list[Order]:
        return await views.customer_orders(self.store, customer_id, active)

    async def rider_active_deliveries(self, rider_id: str) -> list[Order]:
        return await views.rider_active_deliveries(self.store, rider_id)

    async def rider_history(self, rider_id: str) -> list[Order]:
        return await views.rider_history(self.store, rider_id)

    async def vendor_queue(self, vendor_id: str, active_only: bool = False) -> list[Order]:
        return await views.vendor_queue(self.store, vendor_id, active_only)

    async def vendor_summary(self, vendor_id: str) -> views.VendorSummary:
        return await views.vendor_summary(self.store, vendor_id)

    # lifecycle

    async def apply_transition(
        self,
        order_id: str,
        actor_role: ActorRole | str,
        actor_id: str,
        target_status: OrderStatus | str,
        expected_status: Optional[OrderStatus | str] = None,
        confirmation_code: Optional[str] = None,
    ) -> Order:
        return await self.engine.apply_transition(
            order_id, actor_role, actor_id, target_status,
            expected_status=expected_status,
            confirmation_code=confirmation_code,
        )

    async def claim_order(self, order_id: str, rider_id: str) -> Order:
        return await self.resolver.claim_order(order_id, rider_id)

    async def submit_review(self, order_id: str, customer_id: str, rating: int, comment: Optional[str] = None) -> Review:
        order = await self.get_order(order_id)
        if order.customer_id != customer_id:
            raise NotAuthorized("only the customer can review this order")
        if order.status != OrderStatus.DELIVERED:
            raise ValidationError("only delivered orders can be reviewed")
        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(f"rating must be between {MIN_RATING} and {MAX_RATING}")

        review = await self.store.insert_review(order_id, customer_id, rating, (comment or "").strip() or None)
        if review is None:
            raise ValidationError("order has already been reviewed")
        logger.info("Order %s reviewed: %d", order_id, rating)
        await self._emit(OrderEvent.for_change(order, order, event_type=REVIEWED))
        return review
