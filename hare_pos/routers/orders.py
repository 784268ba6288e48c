"""
Orders Router: cart, checkout, void/restore, delivery orders and the shipping list.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from hare_pos.models.api_models import (
    CartAdd,
    CartQtyChange,
    CheckoutRequest,
    DeliveryOrderRequest,
    OrderPageResponse,
    ShipStatusRequest,
    VoidRequest,
)
from hare_pos.routers.deps import get_session
from hare_pos.services import order_service
from hare_pos.services.order_service import OrderQuery
from hare_pos.services.report_service import filter_orders
from hare_pos.services.session_service import PosSession
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import NotFoundError
import logging

cart_router = APIRouter()
router = APIRouter()
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def _cart_payload(session: PosSession) -> dict:
    return {
        "items": [{"key": line.key, **line.to_wire()} for line in session.cart.items],
        "total": session.cart.total,
    }


# ========== Cart ==========

@cart_router.get("")
async def get_cart(session: PosSession = Depends(get_session)):
    return _cart_payload(session)


@cart_router.post("/items")
async def add_to_cart(body: CartAdd, session: PosSession = Depends(get_session)):
    product = session.store.inventory.find(body.shelf, body.product_id)
    if product is None:
        raise NotFoundError(f"Product {body.product_id} not found on {body.shelf.value}")
    session.cart.add(product, body.shelf, body.qty)
    return _cart_payload(session)


@cart_router.patch("/items/{key}")
async def change_cart_qty(key: str, body: CartQtyChange, session: PosSession = Depends(get_session)):
    session.cart.change_qty(key, body.delta)
    return _cart_payload(session)


@cart_router.delete("/items/{key}")
async def remove_from_cart(key: str, session: PosSession = Depends(get_session)):
    if not session.cart.remove(key):
        raise NotFoundError(f"Cart line {key} not found")
    return _cart_payload(session)


@cart_router.delete("")
async def clear_cart(session: PosSession = Depends(get_session)):
    session.cart.clear()
    return _cart_payload(session)


# ========== Orders ==========

@router.post("/checkout", status_code=201)
@limiter.limit(f"{settings.RATE_LIMIT_REQUESTS}/{settings.RATE_LIMIT_PERIOD}")
async def checkout(request: Request, body: CheckoutRequest, session: PosSession = Depends(get_session)):
    """Place an order from the session cart. Insufficient stock returns 422 with every shortfall."""
    order = session.checkout(
        total=body.total,
        payment_method=body.payment_method,
        channel=body.channel,
        delivery=body.delivery,
        delivery_fee=body.delivery_fee,
    )
    return order.to_wire()


@router.get("", response_model=OrderPageResponse)
async def list_orders(
    source: str = Query("local", pattern="^(local|remote)$"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: str = Query("all", pattern="^(all|active|voided)$"),
    channel: str = Query("ALL", pattern="^(ALL|IN_STORE|DELIVERY)$"),
    page: int = Query(0, ge=0),
    page_size: int = Query(20, ge=1, le=500),
    session: PosSession = Depends(get_session),
):
    """Session orders (``source=local``) or the backend order history (``source=remote``)."""
    query = OrderQuery(date_from=date_from, date_to=date_to, status=status, channel=channel,
                       page=page, page_size=page_size)
    if source == "remote":
        result = await order_service.fetch_orders(session.ctx, query)
        return OrderPageResponse(rows=[o.to_wire() for o in result.rows], count=result.count,
                                 total_amount=result.total_amount)

    matched = filter_orders(session.store.orders, query)
    window = matched[page * page_size:(page + 1) * page_size]
    return OrderPageResponse(rows=[o.to_wire() for o in window], count=len(matched),
                             total_amount=sum(o.total for o in window))


@router.post("/delivery", status_code=201)
async def record_delivery(body: DeliveryOrderRequest, session: PosSession = Depends(get_session)):
    order = session.record_delivery(body.fee, payment_method=body.payment_method, delivery=body.delivery)
    return order.to_wire()


@router.get("/shipping")
async def shipping_list(
    ship_status: str = Query("PENDING", pattern="^(PENDING|CLOSED)$"),
    limit: int = Query(200, ge=1, le=1000),
    session: PosSession = Depends(get_session),
):
    return await order_service.list_shipping(session.ctx, ship_status, limit=limit)


@router.post("/{order_id}/void")
async def void_order(order_id: str, body: Optional[VoidRequest] = None, session: PosSession = Depends(get_session)):
    body = body or VoidRequest()
    order = session.void_order(order_id, restock=body.restock, reason=body.reason)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order.to_wire()


@router.post("/{order_id}/restore")
async def restore_order(order_id: str, session: PosSession = Depends(get_session)):
    return session.engine.restore_order(order_id).to_wire()


@router.post("/{order_id}/ship-status")
async def set_ship_status(order_id: str, body: ShipStatusRequest, session: PosSession = Depends(get_session)):
    await order_service.set_ship_status(session.ctx, order_id, body.ship_status)
    return {"status": "ok", "id": order_id, "ship_status": body.ship_status}
