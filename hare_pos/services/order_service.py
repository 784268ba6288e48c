"""
Order Service: backend order RPCs and the reporting query over orders/order_items.

Channel filtering is done client-side because older schemas have no
``channel`` column; delivery orders are recognised by ``is_delivery_order``.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional
import json
import logging

from hare_pos.models.pos_models import Channel, DeliveryInfo, Order, OrderItem
from hare_pos.services.org_context import OrgContext
from hare_pos.services.supabase_client import eq, gte, in_, lte
from hare_pos.utils.config import settings
from hare_pos.utils.exceptions import NotFoundError, PersistenceError, ValidationError
from hare_pos.utils.numbers import to_number

logger = logging.getLogger(__name__)

WIDE_ORDER_COLUMNS = (
    "id,created_at,status,payment_method,total,delivery_fee,"
    "channel,is_delivery,delivery_info,delivery,void_reason,voided_at"
)
LEGACY_ORDER_COLUMNS = (
    "id,created_at,status,payment_method,total,delivery_fee,"
    "is_delivery,delivery,void_reason,voided_at"
)
ORDER_ITEM_COLUMNS = "order_id,name,category,sub_key,grams,qty,price,sku"

STATUS_FILTERS = ("all", "active", "voided")
CHANNEL_FILTERS = ("ALL", "IN_STORE", "DELIVERY")
SHIP_STATUSES = ("PENDING", "CLOSED")


def _json_object(value: Any) -> Optional[dict]:
    """Delivery JSON may arrive as an object or as a JSON string."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    return value if isinstance(value, dict) else None


def is_delivery_order(row: dict) -> bool:
    """
    Decide whether an order row is a delivery.

    Precedence: explicit ``is_delivery`` flag, then ``channel``, then any
    non-empty delivery JSON or a positive delivery fee.
    """
    if isinstance(row.get("is_delivery"), bool):
        return row["is_delivery"]
    if isinstance(row.get("channel"), str):
        return row["channel"] == Channel.DELIVERY.value
    info = _json_object(row.get("delivery_info")) or _json_object(row.get("delivery"))
    return bool(info) or to_number(row.get("delivery_fee")) > 0


def start_of_day(day: date) -> str:
    return datetime.combine(day, time.min, tzinfo=timezone.utc).isoformat()


def end_of_day(day: date) -> str:
    return datetime.combine(day, time.max, tzinfo=timezone.utc).isoformat()


@dataclass
class OrderQuery:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: str = "all"
    channel: str = "ALL"
    page: int = 0
    page_size: int = 20

    def __post_init__(self):
        if self.status not in STATUS_FILTERS:
            raise ValidationError(f"Unknown status filter: {self.status}")
        if self.channel not in CHANNEL_FILTERS:
            raise ValidationError(f"Unknown channel filter: {self.channel}")
        if self.page < 0 or self.page_size <= 0:
            raise ValidationError("Invalid pagination")


@dataclass
class OrderPage:
    rows: List[Order] = field(default_factory=list)
    count: int = 0
    total_amount: float = 0.0


def _item_payload(item: OrderItem) -> dict:
    payload = {
        "name": item.name,
        "sku": item.sku or item.id,
        "qty": item.qty,
        "price": item.price,
        "category": item.category.value,
    }
    if item.grams is not None:
        payload["grams"] = item.grams
    if item.sub_key is not None:
        payload["sub_key"] = item.sub_key.value
    return payload


def _delivery_payload(delivery: Any) -> dict:
    if delivery is None:
        return {}
    if isinstance(delivery, DeliveryInfo):
        return delivery.model_dump(exclude_none=True)
    return dict(delivery)


# ========== RPCs ==========

async def place_order(
    ctx: OrgContext,
    items: List[OrderItem],
    payment_method: Optional[str],
    status: str = "ACTIVE",
    delivery_fee: Any = 0,
    delivery_info: Any = None,
) -> str:
    """
    Create an order through the ``place_order`` RPC.

    The total sent is sum(qty * price); a non-empty delivery_info marks the
    order as a delivery on the backend.

    Returns:
        The new order id
    """
    total = sum(to_number(i.qty) * to_number(i.price) for i in items)
    order_id = await ctx.client.rpc("place_order", {
        "p_payment_method": payment_method,
        "p_items": [_item_payload(i) for i in items],
        "p_total": total,
        "p_status": status,
        "p_delivery_fee": to_number(delivery_fee),
        "p_delivery_info": _delivery_payload(delivery_info),
        # Disambiguates between the RPC's overloads
        "p_fail_when_insufficient": False,
    })
    logger.info(f"[{ctx.org_id}] place_order RPC created {order_id}")
    return str(order_id) if order_id is not None else ""


async def place_delivery(
    ctx: OrgContext,
    items: List[OrderItem],
    payment_method: Optional[str],
    info: Any,
    delivery_fee: Any = 0,
    status: str = "ACTIVE",
) -> str:
    return await place_order(ctx, items, payment_method, status=status, delivery_fee=delivery_fee, delivery_info=info)


async def void_order_remote(ctx: OrgContext, order_id: str, reason: Optional[str] = None, restock: bool = False):
    await ctx.client.rpc("void_order", {
        "p_order_id": order_id,
        "p_reason": reason,
        "p_restock": bool(restock),
    })
    logger.info(f"[{ctx.org_id}] void_order RPC for {order_id} (restock={restock})")


async def mirror_order(ctx: OrgContext, order: Order):
    """Push a locally placed order to the backend RPC."""
    await place_order(
        ctx,
        order.items,
        order.payment_method,
        delivery_fee=order.delivery_fee,
        delivery_info=order.delivery if order.channel is Channel.DELIVERY else None,
    )


# ========== Reporting query ==========

def _order_from_row(row: dict) -> Order:
    delivery = _json_object(row.get("delivery_info")) or _json_object(row.get("delivery"))
    return Order(
        id=str(row.get("id")),
        created_at=str(row.get("created_at") or ""),
        total=row.get("total"),
        payment_method=row.get("payment_method"),
        voided=row.get("status") == "VOIDED",
        voided_at=row.get("voided_at"),
        void_reason=row.get("void_reason"),
        channel=Channel.DELIVERY if is_delivery_order(row) else Channel.IN_STORE,
        delivery_fee=row.get("delivery_fee") or 0,
        delivery=DeliveryInfo.model_validate(delivery) if delivery else None,
    )


def _item_from_row(row: dict) -> OrderItem:
    return OrderItem(
        id=str(row.get("sku") or row.get("name") or ""),
        name=row.get("name") or "",
        qty=row.get("qty"),
        price=row.get("price"),
        category=row.get("category"),
        sub_key=row.get("sub_key"),
        grams=row.get("grams") if isinstance(row.get("grams"), (int, float)) else None,
        sku=row.get("sku"),
    )


async def fetch_orders(ctx: OrgContext, query: OrderQuery) -> OrderPage:
    """
    Page through backend orders with their items.

    The wide column set is tried first; a backend rejection (usually a
    missing column on older schemas) falls back to the legacy set.
    """
    filters: Dict[str, str] = {}
    if query.date_from and query.date_to:
        filters["and"] = f"(created_at.gte.{start_of_day(query.date_from)},created_at.lte.{end_of_day(query.date_to)})"
    elif query.date_from:
        filters["created_at"] = gte(start_of_day(query.date_from))
    elif query.date_to:
        filters["created_at"] = lte(end_of_day(query.date_to))
    if query.status != "all":
        filters["status"] = eq(query.status.upper())

    select_args = dict(
        filters=filters,
        order="created_at.desc",
        limit=query.page_size,
        offset=query.page * query.page_size,
        count=True,
    )
    try:
        result = await ctx.client.select("orders", columns=WIDE_ORDER_COLUMNS, **select_args)
    except PersistenceError as e:
        logger.info(f"[{ctx.org_id}] Wide orders query rejected ({e.code}), retrying legacy columns")
        result = await ctx.client.select("orders", columns=LEGACY_ORDER_COLUMNS, **select_args)

    orders = [_order_from_row(row) for row in result.rows]
    if query.channel != "ALL":
        wanted = Channel(query.channel)
        orders = [o for o in orders if o.channel is wanted]

    if not orders:
        return OrderPage(rows=[], count=result.count or 0, total_amount=0.0)

    try:
        items = await ctx.client.select(
            "order_items",
            columns=ORDER_ITEM_COLUMNS,
            filters={"order_id": in_(o.id for o in orders)},
        )
    except PersistenceError as e:
        # Orders are still reported without their lines
        logger.warning(f"[{ctx.org_id}] order_items query failed: {e.message}")
        items = None

    if items is not None:
        by_order: Dict[str, List[OrderItem]] = {}
        for row in items.rows:
            by_order.setdefault(str(row.get("order_id")), []).append(_item_from_row(row))
        for order in orders:
            order.items = by_order.get(order.id, [])

    total_amount = sum(o.total for o in orders)
    return OrderPage(rows=orders, count=result.count or 0, total_amount=total_amount)


async def fetch_all_orders(ctx: OrgContext, query: OrderQuery, max_rows: Optional[int] = None) -> List[Order]:
    """Collect every page of a query, up to ``max_rows`` orders (for exports)."""
    limit = max_rows or settings.REPORT_MAX_ROWS
    collected: List[Order] = []
    page = 0
    while len(collected) < limit:
        paged = OrderQuery(
            date_from=query.date_from,
            date_to=query.date_to,
            status=query.status,
            channel=query.channel,
            page=page,
            page_size=min(500, limit),
        )
        result = await fetch_orders(ctx, paged)
        collected.extend(result.rows)
        if (page + 1) * paged.page_size >= result.count:
            break
        page += 1
    return collected[:limit]


# ========== Shipping list ==========

async def list_shipping(ctx: OrgContext, ship_status: str = "PENDING", limit: int = 200) -> List[dict]:
    """Delivery orders with the given ship status, newest first."""
    if ship_status not in SHIP_STATUSES:
        raise ValidationError(f"Unknown ship status: {ship_status}")

    result = await ctx.client.select(
        "orders",
        columns="id,created_at,status,payment_method,total,delivery_fee,channel,is_delivery,delivery_info,delivery",
        order="created_at.desc",
        limit=limit * 3,
    )
    rows = []
    for row in result.rows:
        if not is_delivery_order(row):
            continue
        info = _json_object(row.get("delivery_info")) or _json_object(row.get("delivery")) or {}
        status = "CLOSED" if info.get("ship_status") == "CLOSED" else "PENDING"
        if status != ship_status:
            continue
        rows.append({
            "id": row.get("id"),
            "created_at": row.get("created_at"),
            "status": row.get("status"),
            "payment_method": row.get("payment_method"),
            "total": to_number(row.get("total")),
            "ship_status": status,
            "customer_name": info.get("customer_name"),
            "delivery": info,
        })
    return rows[:limit]


async def set_ship_status(ctx: OrgContext, order_id: str, ship_status: str):
    """Update ``ship_status`` inside the order's delivery JSON, keeping its other fields."""
    if ship_status not in SHIP_STATUSES:
        raise ValidationError(f"Unknown ship status: {ship_status}")

    row = await ctx.client.select_one("orders", columns="delivery_info,delivery", filters={"id": eq(order_id)})
    if row is None:
        raise NotFoundError(f"Order {order_id} not found")

    column = "delivery_info" if "delivery_info" in row else "delivery"
    info = _json_object(row.get("delivery_info")) or _json_object(row.get("delivery")) or {}
    await ctx.client.update("orders", {column: {**info, "ship_status": ship_status}}, {"id": eq(order_id)})
    logger.info(f"[{ctx.org_id}] Order {order_id} ship status -> {ship_status}")
