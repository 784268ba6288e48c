"""
Report Service: CSV exports and the sales dashboard.

Reports work on Order models, so they can be built from the backend
reporting query or from a session's local orders alike. Timestamps are
rendered in ``settings.REPORT_TIMEZONE``.
"""
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
import csv
import io
import logging

from dateutil import parser as date_parser
from dateutil import tz

from hare_pos.models.pos_models import Category, Channel, Order
from hare_pos.models.report_models import (
    BeanByType,
    Dashboard,
    DailyRevenue,
    DashboardRange,
    PaymentBreakdown,
    RevenueSummary,
)
from hare_pos.services.order_service import OrderQuery
from hare_pos.utils.config import settings
from hare_pos.utils.numbers import to_number

logger = logging.getLogger(__name__)

SUMMARY_HEADER = ["Date", "OrderID", "Type", "Channel", "Payment", "Total", "Voided"]
DETAILS_HEADER = [
    "Date", "OrderID", "Type", "Channel", "Payment", "Voided",
    "ItemName", "SKU", "Qty", "UnitPrice", "Subtotal", "Category", "Grams",
]
UNKNOWN_PAYMENT = "unknown"


def report_tz():
    return tz.gettz(settings.REPORT_TIMEZONE) or tz.UTC


def _localize(value: Optional[datetime], zone) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz.UTC)
    return value.astimezone(zone)


# ========== Formatting ==========

def fmt_money(value: Any) -> str:
    """Round to 2 places and drop trailing zeros: 12.5 -> "12.5", 3.0 -> "3"."""
    rounded = Decimal(str(to_number(value))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{rounded:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def fmt_datetime(value: Any, zone=None) -> str:
    """``YYYY-MM-DD HH:MM:SS`` in the report timezone; unparseable input is returned as-is."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (TypeError, ValueError):
            return str(value or "")
    return _localize(parsed, zone or report_tz()).strftime("%Y-%m-%d %H:%M:%S")


def filter_orders(orders: List[Order], query: OrderQuery) -> List[Order]:
    """Apply a reporting query's date/status/channel filters to local orders (no paging)."""
    zone = report_tz()
    selected = []
    for order in orders:
        if query.status == "active" and order.voided:
            continue
        if query.status == "voided" and not order.voided:
            continue
        if query.channel != "ALL" and order.channel.value != query.channel:
            continue
        if query.date_from or query.date_to:
            local = _localize(order.created_datetime, zone)
            if local is None:
                continue
            if query.date_from and local.date() < query.date_from:
                continue
            if query.date_to and local.date() > query.date_to:
                continue
        selected.append(order)
    return selected


def order_type(order: Order) -> str:
    return "Delivery" if order.channel is Channel.DELIVERY else "In-store"


def _to_csv(rows: Iterable[List[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerows(rows)
    # BOM so spreadsheet apps detect UTF-8; no trailing line break
    return "\ufeff" + buffer.getvalue().removesuffix("\r\n")


# ========== CSV exports ==========

def export_summary_csv(orders: List[Order]) -> str:
    """One row per order."""
    zone = report_tz()
    rows = [SUMMARY_HEADER]
    for order in orders:
        rows.append([
            fmt_datetime(order.created_at, zone),
            order.id,
            order_type(order),
            order.channel.value,
            order.payment_method or "",
            fmt_money(order.total),
            "YES" if order.voided else "NO",
        ])
    return _to_csv(rows)


def export_details_csv(orders: List[Order]) -> str:
    """One row per line item; orders without items are skipped."""
    zone = report_tz()
    rows = [DETAILS_HEADER]
    for order in orders:
        if not order.items:
            continue
        common = [
            fmt_datetime(order.created_at, zone),
            order.id,
            order_type(order),
            order.channel.value,
            order.payment_method or "",
            "YES" if order.voided else "NO",
        ]
        for item in order.items:
            rows.append(common + [
                item.name,
                item.sku or "",
                fmt_money(item.qty),
                fmt_money(item.price),
                fmt_money(item.qty * item.price),
                item.category.value,
                "" if item.grams is None else item.grams,
            ])
    return _to_csv(rows)


# ========== Dashboard ==========

def dashboard_window(
    day: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    last_days: Optional[int] = None,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """First and last calendar day a dashboard needs orders for."""
    anchor = day or today or datetime.now(report_tz()).date()
    start = date_from or anchor
    end = date_to or anchor
    days = settings.DASHBOARD_LAST_DAYS if last_days is None else last_days
    if days > 0:
        start = min(start, anchor - timedelta(days=days - 1))
    return start, end


def _beans_by_type(orders: List[Order]) -> List[BeanByType]:
    by_gram: Dict[str, Dict[int, List[float]]] = {}
    totals: Dict[str, List[float]] = {}
    for order in orders:
        for item in order.items:
            if item.category is not Category.BEANS:
                continue
            name = item.name.strip()
            revenue = item.qty * item.price
            cell = by_gram.setdefault(name, {}).setdefault(item.grams or 0, [0.0, 0.0])
            cell[0] += item.qty
            cell[1] += revenue
            total = totals.setdefault(name, [0.0, 0.0])
            total[0] += item.qty
            total[1] += revenue

    rows = []
    for name, variants in by_gram.items():
        label = " • ".join(f"{grams}g × {fmt_money(qty)}" for grams, (qty, _) in sorted(variants.items()))
        qty, revenue = totals[name]
        if qty > 0:
            rows.append(BeanByType(bean=name, variants_label=label, qty=qty, revenue=revenue))
    rows.sort(key=lambda row: row.revenue, reverse=True)
    return rows


def build_dashboard(
    orders: List[Order],
    day: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    last_days: Optional[int] = None,
    today: Optional[date] = None,
) -> Dashboard:
    """
    Summarize active orders for a day (or a from/to range).

    Args:
        orders: Candidate orders; voided ones are ignored
        day: Anchor day, defaults to today in the report timezone
        date_from: Range start, defaults to ``day``
        date_to: Range end, defaults to ``day``
        last_days: Size of the trailing daily-revenue window ending at ``day``
        today: Override for "today" (tests)

    Returns:
        Dashboard with revenue by channel, payment breakdown, beans by type
        and last-N-days buckets
    """
    zone = report_tz()
    anchor = day or today or datetime.now(zone).date()
    start = date_from or anchor
    end = date_to or anchor
    days = settings.DASHBOARD_LAST_DAYS if last_days is None else last_days

    active: List[Tuple[Order, date]] = []
    for order in orders:
        if order.voided:
            continue
        local = _localize(order.created_datetime, zone)
        if local is None:
            logger.debug(f"Dashboard skipping order {order.id} with unparseable timestamp")
            continue
        active.append((order, local.date()))

    in_range = [order for order, local_day in active if start <= local_day <= end]
    store_orders = [o for o in in_range if o.channel is not Channel.DELIVERY]
    delivery_orders = [o for o in in_range if o.channel is Channel.DELIVERY]

    def summarize(group: List[Order]) -> RevenueSummary:
        amount = sum(o.total for o in group)
        return RevenueSummary(amount=amount, count=len(group), aov=amount / len(group) if group else 0.0)

    payments: Dict[str, PaymentBreakdown] = {}
    for order in in_range:
        method = order.payment_method or UNKNOWN_PAYMENT
        entry = payments.setdefault(method, PaymentBreakdown(method=method))
        entry.amount += order.total
        entry.count += 1

    buckets: Dict[date, DailyRevenue] = {}
    if days > 0:
        first = anchor - timedelta(days=days - 1)
        for offset in range(days):
            bucket_day = first + timedelta(days=offset)
            buckets[bucket_day] = DailyRevenue(date=bucket_day.isoformat())
        for order, local_day in active:
            bucket = buckets.get(local_day)
            if bucket is not None:
                bucket.revenue += order.total
                bucket.orders += 1

    total_orders = len(in_range)
    total_amount = sum(o.total for o in in_range)
    return Dashboard(
        range=DashboardRange(
            date_from=datetime.combine(start, time.min, tzinfo=zone).isoformat(),
            date_to=datetime.combine(end, time.max, tzinfo=zone).isoformat(),
        ),
        order_revenue=summarize(store_orders),
        delivery_revenue=summarize(delivery_orders),
        total_orders=total_orders,
        aov_all=total_amount / total_orders if total_orders else 0.0,
        payments=list(payments.values()),
        beans_by_type=_beans_by_type(in_range),
        last_days=[buckets[key] for key in sorted(buckets)],
    )
