"""
Assignment Resolver: riders claim ready, unassigned orders. At most one rider
wins per order because the check and the write are a single conditional
update in the store, never a read-then-write from here.
"""
import logging
import secrets
from typing import Awaitable, Callable

from campus_eats.errors import AlreadyClaimed, NotFound
from campus_eats.metrics import claims_total
from campus_eats.models import Order
from campus_eats.notifier import OrderEvent
from campus_eats.order_state import OrderStatus
from campus_eats.store import OrderStore

logger = logging.getLogger(__name__)


def generate_otp(length: int = 6) -> str:
    """Uniformly random numeric code, zero-padded to `length` digits."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class AssignmentResolver:
    def __init__(
        self,
        store: OrderStore,
        on_change: Callable[[OrderEvent], Awaitable[None]],
        otp_length: int = 6,
    ):
        self.store = store
        self.on_change = on_change
        self.otp_length = otp_length

    async def claim_order(self, order_id: str, rider_id: str) -> Order:
        """
        Assign order_id to rider_id and issue its delivery code.
        Raises NotFound for an unknown order and AlreadyClaimed when another
        rider got there first or the order is no longer `ready`; callers
        should refresh the available list rather than retry.
        """
        if await self.store.get_order(order_id) is None:
            raise NotFound(f"order {order_id} not found")

        claimed = await self.store.claim(order_id, rider_id, generate_otp(self.otp_length))
        if claimed is None:
            claims_total.labels(outcome="lost").inc()
            logger.info("Claim lost order_id=%s rider_id=%s", order_id, rider_id)
            raise AlreadyClaimed(order_id)

        claims_total.labels(outcome="won").inc()
        logger.info("Order %s assigned to rider %s", order_id, rider_id)
        # the conditional update only matches a ready, unassigned row
        await self.on_change(OrderEvent(
            event_type=OrderStatus.ASSIGNED.value,
            order=claimed,
            previous_status=OrderStatus.READY,
            previous_rider_id=None,
        ))
        return claimed
