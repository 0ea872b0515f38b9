from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from campus_eats.deps import get_service, order_view, require_role
from campus_eats.models import Actor
from campus_eats.order_state import ActorRole
from campus_eats.service import OrderService

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.get("/available")
async def available(
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(require_role(ActorRole.RIDER)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """Ready orders nobody has claimed yet."""
    orders = await service.available_deliveries(limit)
    return JSONResponse(content={"orders": [order_view(o, actor) for o in orders]})


@router.get("/active")
async def active(
    actor: Actor = Depends(require_role(ActorRole.RIDER)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    orders = await service.rider_active_deliveries(actor.id)
    return JSONResponse(content={"orders": [order_view(o, actor) for o in orders]})


@router.get("/history")
async def history(
    actor: Actor = Depends(require_role(ActorRole.RIDER)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    orders = await service.rider_history(actor.id)
    profile = await service.store.get_rider_profile(actor.id)
    return JSONResponse(content={
        "orders": [order_view(o, actor) for o in orders],
        "total_deliveries": profile.total_deliveries if profile else 0,
        "rating": str(profile.rating) if profile else "0.00",
    })
