from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from campus_eats.deps import get_service, order_view, require_role
from campus_eats.errors import NotAuthorized, NotFound
from campus_eats.models import Actor, Vendor
from campus_eats.order_state import ActorRole
from campus_eats.service import OrderService

router = APIRouter(prefix="/vendors", tags=["vendors"])


async def _owned_vendor(service: OrderService, vendor_id: str, actor: Actor) -> Vendor:
    vendor = await service.store.get_vendor(vendor_id)
    if vendor is None:
        raise NotFound(f"vendor {vendor_id} not found")
    if vendor.user_id != actor.id:
        raise NotAuthorized("not your vendor")
    return vendor


@router.get("/{vendor_id}/orders")
async def vendor_orders(
    vendor_id: str,
    active_only: bool = Query(default=False),
    actor: Actor = Depends(require_role(ActorRole.VENDOR)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """The vendor's order queue, newest first."""
    await _owned_vendor(service, vendor_id, actor)
    orders = await service.vendor_queue(vendor_id, active_only=active_only)
    return JSONResponse(content={"orders": [order_view(o, actor) for o in orders]})


@router.get("/{vendor_id}/summary")
async def vendor_summary(
    vendor_id: str,
    actor: Actor = Depends(require_role(ActorRole.VENDOR)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """Dashboard counters: orders awaiting the kitchen, today's revenue, all-time orders."""
    await _owned_vendor(service, vendor_id, actor)
    summary = await service.vendor_summary(vendor_id)
    return JSONResponse(content=summary.to_dict())
