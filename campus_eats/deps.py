"""
Request dependencies. The fronting auth provider sets X-User-Id; the role
comes from the user_roles lookup, never from the client.
"""
from fastapi import Depends, Header, HTTPException, Request

from campus_eats.errors import NotAuthorized
from campus_eats.models import Actor, Order
from campus_eats.order_state import ActorRole
from campus_eats.service import OrderService


def get_service(request: Request) -> OrderService:
    return request.app.state.service


async def get_actor(
    x_user_id: str | None = Header(default=None),
    service: OrderService = Depends(get_service),
) -> Actor:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id")
    try:
        return await service.resolve_actor(x_user_id)
    except NotAuthorized:
        raise HTTPException(status_code=401, detail="Unknown user")


def require_role(*roles: ActorRole):
    async def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise NotAuthorized(f"{actor.role.value} cannot perform this action")
        return actor
    return _check


def order_view(order: Order, actor: Actor) -> dict:
    """Serialize for actor; the delivery code is only for the customer and the assigned rider."""
    return order.to_dict(include_otp=actor.id in (order.customer_id, order.rider_id))
