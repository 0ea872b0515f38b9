"""
Status Transition Engine: the only place an order's status moves.

applyTransition = load -> authorize actor -> staleness check -> edge check
(graph + role matrix) -> conditional commit -> publish.
"""
import hmac
import logging
from typing import Awaitable, Callable, Optional

from campus_eats.assignment import AssignmentResolver
from campus_eats.errors import (
    AlreadyClaimed,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    StaleTransition,
    ValidationError,
)
from campus_eats.metrics import transitions_applied_total, transitions_rejected_total
from campus_eats.models import Order
from campus_eats.notifier import OrderEvent
from campus_eats.order_state import ActorRole, OrderStatus, is_allowed_for_role
from campus_eats.store import OrderStore

logger = logging.getLogger(__name__)


def _coerce(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"unknown {field}: {value!r}")


class TransitionEngine:
    def __init__(
        self,
        store: OrderStore,
        resolver: AssignmentResolver,
        on_change: Callable[[OrderEvent], Awaitable[None]],
        require_delivery_code: bool = False,
    ):
        self.store = store
        self.resolver = resolver
        self.on_change = on_change
        self.require_delivery_code = require_delivery_code

    async def apply_transition(
        self,
        order_id: str,
        actor_role: ActorRole | str,
        actor_id: str,
        target_status: OrderStatus | str,
        expected_status: Optional[OrderStatus | str] = None,
        confirmation_code: Optional[str] = None,
    ) -> Order:
        role = _coerce(ActorRole, actor_role, "role")
        target = _coerce(OrderStatus, target_status, "status")
        expected = _coerce(OrderStatus, expected_status, "status") if expected_status is not None else None

        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found")

        await self._authorize(order, role, actor_id, target)

        current = order.status
        if current == target or (expected is not None and expected != current):
            transitions_rejected_total.labels(reason="stale").inc()
            raise StaleTransition(current.value)

        if not is_allowed_for_role(role, current, target):
            transitions_rejected_total.labels(reason="invalid").inc()
            logger.warning(
                "Rejected transition order_id=%s %s -> %s by %s %s",
                order_id, current.value, target.value, role.value, actor_id,
            )
            raise InvalidTransition(current.value, target.value)

        if target == OrderStatus.ASSIGNED:
            return await self.resolver.claim_order(order_id, actor_id)

        if target == OrderStatus.DELIVERED and self.require_delivery_code:
            if not confirmation_code or not hmac.compare_digest(confirmation_code.encode(), (order.otp_code or "").encode()):
                transitions_rejected_total.labels(reason="bad_code").inc()
                raise ValidationError("delivery confirmation code does not match")

        updated = await self.store.update_status(order_id, current, target)
        if updated is None:
            transitions_rejected_total.labels(reason="stale").inc()
            latest = await self.store.get_order(order_id)
            raise StaleTransition(latest.status.value if latest else None)

        transitions_applied_total.labels(from_status=current.value, to_status=target.value).inc()
        logger.info("Order %s: %s -> %s by %s %s", order_id, current.value, target.value, role.value, actor_id)
        await self.on_change(OrderEvent.for_change(order, updated))
        return updated

    async def _authorize(self, order: Order, role: ActorRole, actor_id: str, target: OrderStatus) -> None:
        if role == ActorRole.VENDOR:
            vendor = await self.store.get_vendor(order.vendor_id)
            if vendor is None or vendor.user_id != actor_id:
                raise NotAuthorized("order belongs to another vendor")
        elif role == ActorRole.RIDER:
            if order.rider_id == actor_id:
                return
            if target == OrderStatus.ASSIGNED:
                if order.rider_id is not None:
                    raise AlreadyClaimed(order.id)
                return
            raise NotAuthorized("order is not assigned to this rider")
        elif order.customer_id != actor_id:
            raise NotAuthorized("order belongs to another customer")
