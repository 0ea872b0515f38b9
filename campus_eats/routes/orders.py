from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from campus_eats.config import settings
from campus_eats.deps import get_actor, get_service, order_view, require_role
from campus_eats.models import Actor
from campus_eats.order_state import ActorRole, OrderStatus
from campus_eats.service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderLine(BaseModel):
    menu_item_id: str = Field(..., description="Menu item to order")
    quantity: int = Field(..., gt=0, le=settings.max_item_quantity, description="Number of portions")


class CreateOrderBody(BaseModel):
    vendor_id: str = Field(..., description="Vendor the cart belongs to")
    items: list[OrderLine] = Field(default_factory=list, description="Cart lines")
    delivery_location: str = Field(..., description="Where on campus to deliver")
    delivery_notes: str | None = Field(default=None, description="Free-text notes for the rider")
    total_amount: Decimal | None = Field(default=None, description="Client-side total; ignored, recomputed server-side")


class TransitionBody(BaseModel):
    target_status: OrderStatus = Field(..., description="Status to move the order to")
    expected_status: OrderStatus | None = Field(default=None, description="Status the client last saw")
    confirmation_code: str | None = Field(default=None, description="Customer's delivery code (for delivered)")


class ReviewBody(BaseModel):
    rating: int = Field(..., description="1 to 5")
    comment: str | None = Field(default=None)


@router.post("")
async def create_order(
    body: CreateOrderBody,
    actor: Actor = Depends(require_role(ActorRole.STUDENT)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """Place an order. Totals are computed from catalog prices plus the delivery fee."""
    order = await service.create_order(
        customer_id=actor.id,
        vendor_id=body.vendor_id,
        items=[(line.menu_item_id, line.quantity) for line in body.items],
        delivery_location=body.delivery_location,
        notes=body.delivery_notes,
    )
    return JSONResponse(status_code=201, content=order_view(order, actor))


@router.get("")
async def list_my_orders(
    status: list[OrderStatus] | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    orders = await service.list_orders_for(actor, frozenset(status) if status else None)
    return JSONResponse(content={"orders": [order_view(o, actor) for o in orders]})


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    order = await service.get_order_for(actor, order_id)
    return JSONResponse(content=order_view(order, actor))


@router.post("/{order_id}/transitions")
async def transition_order(
    order_id: str,
    body: TransitionBody,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """
    Move an order along its lifecycle. 409 stale_transition means the order
    changed underneath the caller: refetch, then retry at most once.
    """
    order = await service.apply_transition(
        order_id,
        actor.role,
        actor.id,
        body.target_status,
        expected_status=body.expected_status,
        confirmation_code=body.confirmation_code,
    )
    return JSONResponse(content=order_view(order, actor))


@router.post("/{order_id}/claim")
async def claim_order(
    order_id: str,
    actor: Actor = Depends(require_role(ActorRole.RIDER)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    """Accept a delivery. 409 already_claimed: refresh the available list, do not retry."""
    order = await service.claim_order(order_id, actor.id)
    return JSONResponse(content=order_view(order, actor))


@router.post("/{order_id}/review")
async def review_order(
    order_id: str,
    body: ReviewBody,
    actor: Actor = Depends(require_role(ActorRole.STUDENT)),
    service: OrderService = Depends(get_service),
) -> JSONResponse:
    review = await service.submit_review(order_id, actor.id, body.rating, body.comment)
    return JSONResponse(status_code=201, content=review.to_dict())
