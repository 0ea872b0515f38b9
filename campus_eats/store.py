"""
Order Store contract. The single source of truth for orders; the conditional
writes (`update_status`, `claim`) are the only way a status changes and each is
one indivisible compare-and-set in the backend.
"""
from abc import ABC, abstractmethod
from typing import Optional

from campus_eats.models import MenuItem, NewOrder, Order, OrderFilter, Review, RiderProfile, Vendor
from campus_eats.order_state import ActorRole, OrderStatus


class OrderStore(ABC):

    # identity / catalog (read-only from the core's perspective)

    @abstractmethod
    async def get_user_role(self, user_id: str) -> Optional[ActorRole]:
        ...

    @abstractmethod
    async def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        ...

    @abstractmethod
    async def get_vendor_by_user(self, user_id: str) -> Optional[Vendor]:
        ...

    @abstractmethod
    async def get_menu_items(self, menu_item_ids: list[str]) -> dict[str, MenuItem]:
        """Catalog snapshot keyed by id; missing ids are simply absent."""

    # orders

    @abstractmethod
    async def insert_order(self, new_order: NewOrder) -> Order:
        """Insert the order and its items atomically with status `pending`."""

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def list_orders(self, order_filter: OrderFilter) -> list[Order]:
        """Finite snapshot, newest first."""

    @abstractmethod
    async def update_status(
        self,
        order_id: str,
        expected_status: OrderStatus,
        new_status: OrderStatus,
    ) -> Optional[Order]:
        """
        Set status WHERE id = order_id AND status = expected_status.
        Cancelling clears rider_id and otp_code. Returns None when no row matched.
        """

    @abstractmethod
    async def claim(self, order_id: str, rider_id: str, otp_code: str) -> Optional[Order]:
        """
        Set rider_id, status = assigned and otp_code
        WHERE id = order_id AND rider_id IS NULL AND status = 'ready'.
        Returns None when no row matched.
        """

    # reviews and aggregates

    @abstractmethod
    async def insert_review(self, order_id: str, customer_id: str, rating: int, comment: Optional[str]) -> Optional[Review]:
        """Returns None if the order already has a review."""

    @abstractmethod
    async def get_rider_profile(self, user_id: str) -> Optional[RiderProfile]:
        ...

    @abstractmethod
    async def apply_delivery_event(self, event_id: str, rider_id: str) -> bool:
        """
        Increment the rider's delivery counter and recompute their rating, once per event_id.
        Returns False if event_id was already processed.
        """

    @abstractmethod
    async def apply_review_event(self, event_id: str, order_id: str) -> bool:
        """Recompute rider and vendor ratings for the reviewed order, once per event_id."""

    async def close(self) -> None:
        return None
