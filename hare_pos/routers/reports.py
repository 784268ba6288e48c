"""
Reports Router: summary/detail CSV downloads and the sales dashboard.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from hare_pos.models.pos_models import Order
from hare_pos.models.report_models import Dashboard
from hare_pos.routers.deps import get_session
from hare_pos.services import order_service
from hare_pos.services.order_service import OrderQuery
from hare_pos.services.report_service import (
    build_dashboard,
    dashboard_window,
    export_details_csv,
    export_summary_csv,
    filter_orders,
)
from hare_pos.services.session_service import PosSession
from hare_pos.utils.config import settings

router = APIRouter()

SOURCE_PATTERN = "^(local|remote)$"


async def _load_orders(session: PosSession, query: OrderQuery, source: str) -> List[Order]:
    if source == "remote":
        return await order_service.fetch_all_orders(session.ctx, query, max_rows=settings.REPORT_MAX_ROWS)
    return filter_orders(session.store.orders, query)[:settings.REPORT_MAX_ROWS]


def _csv_response(content: str, kind: str, date_from: Optional[date], date_to: Optional[date]) -> Response:
    label = f"{date_from or 'all'}_{date_to or 'today'}"
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="orders_{kind}_{label}.csv"'},
    )


@router.get("/summary.csv")
async def summary_csv(
    source: str = Query("remote", pattern=SOURCE_PATTERN),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: str = Query("all", pattern="^(all|active|voided)$"),
    channel: str = Query("ALL", pattern="^(ALL|IN_STORE|DELIVERY)$"),
    session: PosSession = Depends(get_session),
):
    query = OrderQuery(date_from=date_from, date_to=date_to, status=status, channel=channel)
    orders = await _load_orders(session, query, source)
    return _csv_response(export_summary_csv(orders), "summary", date_from, date_to)


@router.get("/details.csv")
async def details_csv(
    source: str = Query("remote", pattern=SOURCE_PATTERN),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: str = Query("all", pattern="^(all|active|voided)$"),
    channel: str = Query("ALL", pattern="^(ALL|IN_STORE|DELIVERY)$"),
    session: PosSession = Depends(get_session),
):
    query = OrderQuery(date_from=date_from, date_to=date_to, status=status, channel=channel)
    orders = await _load_orders(session, query, source)
    return _csv_response(export_details_csv(orders), "details", date_from, date_to)


@router.get("/dashboard", response_model=Dashboard)
async def dashboard(
    source: str = Query("remote", pattern=SOURCE_PATTERN),
    day: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    last_days: Optional[int] = Query(None, ge=0, le=31),
    session: PosSession = Depends(get_session),
):
    """Active-order dashboard for a day (default today) or a from/to range."""
    first, last = dashboard_window(day=day, date_from=date_from, date_to=date_to, last_days=last_days)
    query = OrderQuery(date_from=first, date_to=last, status="active")
    orders = await _load_orders(session, query, source)
    return build_dashboard(orders, day=day, date_from=date_from, date_to=date_to, last_days=last_days)
